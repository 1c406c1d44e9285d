import os
from pathlib import Path

import yaml
from loguru import logger
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class EmbeddingConfig(BaseModel):
    """Configuration of the sentence embedding model."""

    model_name: str = "sentence-transformers/all-MiniLM-L6-v2"
    vector_dimension: int = 384
    # Task prefixes for asymmetric models (e.g. e5, bge)
    query_prefix: str = ""
    passage_prefix: str = ""
    concurrency: int = 5


class ChunkingConfig(BaseModel):
    """Line-window chunking and source filtering limits."""

    min_lines: int = 300
    max_lines: int = 500
    max_file_bytes: int = 1024 * 1024


class LLMConfig(BaseModel):
    """OpenRouter-compatible chat completion endpoint."""

    api_base: str = "https://openrouter.ai/api/v1"
    model: str = "openrouter/auto"
    api_key: str = ""
    timeout: float = 30.0
    max_tokens: int = 1024
    temperature: float = 0.2
    system_prompt: str = "You are a codebase Q&A assistant."


class Settings(BaseSettings):
    """Global configuration for the codebase-qa application."""

    # General System
    db_path: str = "./lancedb_codebase_qa"
    log_level: str = "INFO"
    log_serialize: bool = False

    # Question answering
    top_k: int = 5
    history_limit: int = 10
    min_question_length: int = 3
    verify_references: bool = False

    embedding: EmbeddingConfig = EmbeddingConfig()
    chunking: ChunkingConfig = ChunkingConfig()
    llm: LLMConfig = LLMConfig()

    model_config = SettingsConfigDict(
        env_prefix="CQA_", env_file=".env", env_nested_delimiter="__", extra="ignore"
    )


_SECTIONS: dict[str, type[BaseModel]] = {
    "embedding": EmbeddingConfig,
    "chunking": ChunkingConfig,
    "llm": LLMConfig,
}


def load_settings(config_file: str | None = None) -> Settings:
    """Loads base settings and overrides them from config.yaml."""
    base_settings = Settings()

    if config_file is None:
        config_file = os.getenv("CQA_CONFIG_FILE", "config.yaml")

    yaml_path = Path(config_file)
    if yaml_path.exists():
        with open(yaml_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)

            if not data:
                return base_settings

            # Override System configuration
            if "system" in data and isinstance(data["system"], dict):
                for key, value in data["system"].items():
                    if hasattr(base_settings, key) and key not in _SECTIONS:
                        setattr(base_settings, key, value)

            # Override nested sections, keeping defaults for unspecified keys
            for section, model in _SECTIONS.items():
                if section in data and isinstance(data[section], dict):
                    current = getattr(base_settings, section).model_dump()
                    current.update(data[section])
                    setattr(base_settings, section, model(**current))
    else:
        logger.warning("Configuration file '{}' not found, using defaults", yaml_path)

    # The API key is a secret and is usually provided through the environment only
    if not base_settings.llm.api_key:
        base_settings.llm.api_key = os.getenv("OPENROUTER_API_KEY", "")

    return base_settings


# Global singleton instance
settings = load_settings()
