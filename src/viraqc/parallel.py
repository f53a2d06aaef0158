"""
Per-sample parallel execution.

Samples are independent until partitioning, so per-sample ingestion and
QC work is fanned out over a thread pool and joined in input order.

Example:
    >>> from viraqc.parallel import map_samples
    >>> results = map_samples(process_sample, sample_ids, threads=4)
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def map_samples(func: Callable[[T], R], items: Sequence[T], threads: int = 1) -> List[R]:
    """Apply ``func`` to every item, optionally in parallel.

    Results come back in the order of ``items``. The first exception raised
    by any task propagates to the caller once all tasks have finished.

    Args:
        func: Function taking one item
        items: Items to process (typically sample IDs)
        threads: Worker count; 1 or fewer runs serially

    Returns:
        List of results parallel to ``items``
    """
    if threads <= 1 or len(items) <= 1:
        return [func(item) for item in items]

    workers = min(threads, len(items))
    logger.debug(f"Processing {len(items)} samples with {workers} threads")

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(func, item) for item in items]

    # The context manager has joined every worker at this point
    return [future.result() for future in futures]
