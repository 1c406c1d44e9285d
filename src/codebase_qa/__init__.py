from importlib.metadata import version

try:
    __version__ = version("codebase-qa")
except Exception:
    __version__ = "unknown"
