"""Run one function over many items in parallel and collect every outcome."""

import logging
from concurrent.futures import CancelledError, ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')


class FanOutError(Exception):
    """One or more calls of a concurrent map failed.

    Attributes:
        succeeded: (item, result) pairs for the calls that returned
        failed: (item, exception) pairs for the calls that raised, in input order
    """

    def __init__(self, succeeded: List[Tuple[object, object]], failed: List[Tuple[object, BaseException]]):
        self.succeeded = succeeded
        self.failed = failed
        super().__init__(
            f"{len(failed)} of {len(failed) + len(succeeded)} calls failed; first: {failed[0][1]}"
        )

    @property
    def error(self) -> BaseException:
        return self.failed[0][1]

    @property
    def item(self) -> object:
        return self.failed[0][0]


def concurrent_map(fn: Callable[[T], R], items: Sequence[T], max_workers: Optional[int] = None,
                   on_interrupt: Optional[Callable[[], None]] = None) -> List[R]:
    """Call ``fn`` on every item concurrently.

    Waits for every call to finish, even after a failure, so the caller knows
    exactly which calls had side effects.

    A ``KeyboardInterrupt`` only ever reaches the calling thread. When one
    arrives, calls that have not started are cancelled, ``on_interrupt`` is
    invoked so running calls can wind down, and those calls are still waited
    for. Cancelled calls are reported as failed with ``CancelledError``.

    Returns:
        Results in the same order as ``items``.

    Raises:
        FanOutError: if any call raised an ``Exception`` or was cancelled.
    """
    items = list(items)
    if not items:
        return []

    results = {}
    errors = {}

    def collect(future, index):
        try:
            results[index] = future.result()
        except Exception as e:
            logger.debug(f"Concurrent call for {items[index]!r} failed: {str(e)}")
            errors[index] = e

    workers = min(max_workers or len(items), len(items))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        future_to_index = {}
        try:
            for index, item in enumerate(items):
                future_to_index[executor.submit(fn, item)] = index
            for future in as_completed(future_to_index):
                collect(future, future_to_index[future])
        except KeyboardInterrupt:
            logger.warning("Interrupted; cancelling calls that have not started")
            for future in future_to_index:
                future.cancel()
            if on_interrupt is not None:
                on_interrupt()
            for future, index in future_to_index.items():
                if index not in results and index not in errors:
                    collect(future, index)
            for index in range(len(future_to_index), len(items)):
                errors[index] = CancelledError()

    if errors:
        raise FanOutError(
            succeeded=[(items[i], results[i]) for i in sorted(results)],
            failed=[(items[i], errors[i]) for i in sorted(errors)],
        )
    return [results[i] for i in range(len(items))]
