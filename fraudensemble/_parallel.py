"""
Tree-level parallelism for the forests.

Each tree is built from its own seed, so the ensemble is identical whether
trees are built sequentially or across joblib workers.
"""

from typing import Callable, List, Optional, Sequence, TypeVar

from joblib import Parallel, delayed, effective_n_jobs
from loguru import logger

T = TypeVar('T')

ProgressCallback = Callable[[int, int], None]

# Trees handed to the worker pool per cancellation/progress checkpoint
_BATCHES_PER_WORKER = 4


def build_trees(build_one: Callable[[int], T], seeds: Sequence[int], n_jobs: int = 1,
                progress_callback: Optional[ProgressCallback] = None) -> List[T]:
    """
    Build one tree per seed.

    ``progress_callback(done, total)`` runs after every tree when sequential
    and after every batch when parallel; raising from it aborts the build.
    """
    total = len(seeds)
    trees: List[T] = []

    if n_jobs == 1 or total <= 1:
        for seed in seeds:
            trees.append(build_one(int(seed)))
            logger.debug(f"Built tree {len(trees)}/{total}")
            if progress_callback is not None:
                progress_callback(len(trees), total)
        return trees

    batch_size = effective_n_jobs(n_jobs) * _BATCHES_PER_WORKER
    with Parallel(n_jobs=n_jobs) as parallel:
        for start in range(0, total, batch_size):
            batch = seeds[start:start + batch_size]
            trees.extend(parallel(delayed(build_one)(int(seed)) for seed in batch))
            logger.debug(f"Built trees {len(trees)}/{total}")
            if progress_callback is not None:
                progress_callback(len(trees), total)
    return trees
