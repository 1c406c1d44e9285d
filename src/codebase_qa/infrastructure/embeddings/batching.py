import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

import numpy as np
from loguru import logger
from numpy.typing import NDArray


def failed_vector() -> NDArray[np.float32]:
    """Marker used in batch results for items that could not be embedded."""
    return np.empty(0, dtype=np.float32)


def is_failed(vector: NDArray[np.float32]) -> bool:
    return vector.size == 0


def embed_concurrently(
    embed: Callable[[str], NDArray[np.float32]], texts: list[str], concurrency: int = 5
) -> list[NDArray[np.float32]]:
    """Runs `embed` over `texts` with a fixed pool of workers sharing one cursor.

    Results are written by input position, so ordering matches the input no
    matter which worker finishes first. A failing item becomes `failed_vector()`
    and does not stop the others.
    """
    results: list[NDArray[np.float32]] = [failed_vector() for _ in texts]
    if not texts:
        return results

    cursor = 0
    cursor_lock = threading.Lock()

    def _worker() -> None:
        nonlocal cursor
        while True:
            with cursor_lock:
                if cursor >= len(texts):
                    return
                i = cursor
                cursor += 1
            try:
                results[i] = embed(texts[i])
            except Exception as e:
                logger.warning("Embedding error for chunk {}: {}", i, e)

    width = max(1, min(concurrency, len(texts)))
    with ThreadPoolExecutor(max_workers=width, thread_name_prefix="embed") as pool:
        workers = [pool.submit(_worker) for _ in range(width)]
        for worker in workers:
            worker.result()
    return results
