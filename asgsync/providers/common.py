"""Pagination, batching and error-collection helpers shared by the providers."""
from __future__ import annotations

from typing import Callable, Generic, Iterable, Iterator, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def prepare_batches(max_items: int, items: list[str]) -> list[list[str]]:
    if max_items <= 0:
        raise ValueError("max_items must be positive")
    return [items[i : i + max_items] for i in range(0, len(items), max_items)]


class LazyPages(Generic[T]):
    """Re-iterable view over a paginated listing.

    ``open_pages`` is called at the start of every iteration and must return an
    iterable of pages (each an iterable of items). Page N+1 is only requested
    once page N has been consumed, and an error raised while fetching any page
    propagates out of the iteration.
    """

    def __init__(self, open_pages: Callable[[], Iterable[Iterable[T]]]):
        self._open_pages = open_pages

    def __iter__(self) -> Iterator[T]:
        for page in self._open_pages():
            yield from page


def collect_results(
    items: Iterable[T],
    fn: Callable[[T], R],
    errors: tuple[type[Exception], ...] = (Exception,),
) -> tuple[list[R], list[str]]:
    """Apply ``fn`` to every item, collecting results and error messages separately.

    Every item is attempted; the caller decides afterwards whether any failure
    fails the whole operation. ``fn`` reports a failure by raising one of
    ``errors``; the message is kept as ``str(exc)``. Anything else propagates.
    """
    results: list[R] = []
    failures: list[str] = []
    for item in items:
        try:
            results.append(fn(item))
        except errors as e:
            failures.append(str(e))
    return results, failures
