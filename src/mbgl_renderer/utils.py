import functools
import time
from collections.abc import Mapping
from typing import Any

from mbgl_renderer.logger import logger


def merge_params(*sources: Mapping[str, Any] | None) -> dict[str, Any]:
    """Merge parameter mappings; later sources win, ``None`` values are skipped."""
    merged: dict[str, Any] = {}
    for source in sources:
        if not source:
            continue
        merged.update({k: v for k, v in source.items() if v is not None})
    return merged


def time_debug(func):
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        result = func(*args, **kwargs)
        end_time = time.perf_counter()
        perf_time = (end_time - start_time) * 1000
        logger.debug(f"{func.__name__}: {perf_time} ms")
        return result

    return wrapper


def async_time_debug(func):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        result = await func(*args, **kwargs)
        end_time = time.perf_counter()
        perf_time = (end_time - start_time) * 1000
        logger.debug(f"{func.__name__}: {perf_time} ms")
        return result

    return wrapper
