"""
Random generator handling shared by every training routine.
"""

from typing import Optional, Union

import numpy as np

RandomState = Optional[Union[int, np.random.Generator]]

_SEED_BOUND = np.iinfo(np.uint32).max


def check_random_state(random_state: RandomState = None) -> np.random.Generator:
    """Turn None, an int seed or an existing Generator into a Generator."""
    if isinstance(random_state, np.random.Generator):
        return random_state
    return np.random.default_rng(random_state)


def spawn_seeds(rng: np.random.Generator, n: int) -> np.ndarray:
    """Draw one independent seed per ensemble member."""
    return rng.integers(0, _SEED_BOUND, size=n, dtype=np.int64)
