from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Tuple
import concurrent.futures
import multiprocessing
import time

import numpy as np

from .dbscan_clustering import (
    labels_array,
    run_dbscan,
    summarize_labels,
    to_point_mappings,
    validate_inputs,
)
from ..utils.logging_setup import get_logger

logger = get_logger('parameter_sweep')


@dataclass
class SweepResult:
    eps: float
    min_pts: int
    n_clusters: int
    n_noise: int
    labels: np.ndarray
    duration: float


# Worker function must be top-level for multiprocessing pickling


def _run_single(args: Tuple[List[dict], float, int, str]) -> SweepResult:
    """
    Runs one DBSCAN configuration. Executed in parallel workers.

    Args:
        args: Tuple containing:
            - points: list of point mappings
            - eps, min_pts: DBSCAN parameters
            - metric: registered metric name
    """
    points, eps, min_pts, metric = args
    start_time = time.time()
    # points were validated once by the caller
    records = run_dbscan(points, eps, min_pts, metric=metric, validate=False)
    summary = summarize_labels(records)
    return SweepResult(
        eps=eps,
        min_pts=min_pts,
        n_clusters=summary.n_clusters,
        n_noise=summary.n_noise,
        labels=labels_array(records),
        duration=time.time() - start_time,
    )


def sweep_generator(
    dataset: Any,
    param_grid: Iterable[Tuple[float, int]],
    max_workers: Optional[int] = None,
    metric: str = 'euclidean'
) -> Iterator[Tuple[int, SweepResult]]:
    """
    Runs independent DBSCAN configurations in a process pool.

    Each run owns its own neighbour cache and point table, so runs are
    free to execute concurrently.

    Yields:
        (position, result) as each run completes; position is the index of
        the configuration in param_grid.
    """
    if max_workers is None:
        max_workers = multiprocessing.cpu_count()

    points = to_point_mappings(dataset)
    grid = []
    for eps, min_pts in param_grid:
        params = validate_inputs(points, eps, min_pts)
        grid.append((params.eps, params.min_pts))
    # plain dicts pickle regardless of the caller's mapping type
    points = [dict(p) for p in points]

    tasks = [(points, eps, min_pts, metric) for eps, min_pts in grid]
    if not tasks:
        return

    logger.info(f"Sweeping {len(tasks)} configuration(s) over {len(points)} points with {max_workers} workers")

    if len(tasks) == 1 or max_workers == 1:
        for position, task in enumerate(tasks):
            yield position, _run_single(task)
        return

    with concurrent.futures.ProcessPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(_run_single, task): position
                   for position, task in enumerate(tasks)}
        for future in concurrent.futures.as_completed(futures):
            result = future.result()
            logger.info(
                f"  eps={result.eps}, min_pts={result.min_pts}: "
                f"{result.n_clusters} clusters, {result.n_noise} noise ({result.duration:.2f}s)")
            yield futures[future], result


def parameter_sweep(
    dataset: Any,
    param_grid: Sequence[Tuple[float, int]],
    max_workers: Optional[int] = None,
    metric: str = 'euclidean'
) -> List[SweepResult]:
    """
    Runs DBSCAN for every (eps, min_pts) pair and returns the results in
    grid order. Wrapper around the generator.
    """
    results: List[Optional[SweepResult]] = [None] * len(param_grid)
    for position, result in sweep_generator(dataset, param_grid, max_workers, metric):
        results[position] = result
    return results  # type: ignore
