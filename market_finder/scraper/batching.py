import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Sequence, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], R],
    *,
    concurrency: int,
    batch_pause: float = 0.0,
) -> list[R | BaseException]:
    """Run ``worker`` over ``items`` in sequential fixed-size batches.

    Every batch settles completely before the next starts. The returned list keeps
    input order and holds either the worker's value or the exception it raised.
    """
    size = max(1, concurrency)
    results: list[R | BaseException | None] = [None] * len(items)

    for offset in range(0, len(items), size):
        batch = items[offset : offset + size]
        with ThreadPoolExecutor(max_workers=size) as executor:
            future_to_index = {
                executor.submit(worker, item): offset + idx for idx, item in enumerate(batch)
            }
            for future in as_completed(future_to_index):
                index = future_to_index[future]
                try:
                    results[index] = future.result()
                except Exception as exc:
                    logger.debug("Batch item %s failed: %s", index, exc)
                    results[index] = exc

        if batch_pause > 0 and offset + size < len(items):
            time.sleep(batch_pause)

    return results  # type: ignore[return-value]
