"""
Small helpers shared by the driver, the verifier and the CLI
"""
from typing import Iterable, Iterator, List, TypeVar

T = TypeVar('T')


def batched(iterable: Iterable[T], batch_size: int) -> Iterator[List[T]]:
    """Split an iterable into lists of at most batch_size items, consuming it lazily"""
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    items: List[T] = []
    for item in iterable:
        items.append(item)
        if len(items) >= batch_size:
            yield items
            items = []
    if items:
        yield items


def format_duration(seconds: float) -> str:
    """Human readable duration, e.g. '1d 2h 3m 4s'"""
    total = int(max(seconds, 0))
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)
