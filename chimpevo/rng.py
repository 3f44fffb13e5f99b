"""Seeded RNG factory for reproducible simulations.

Uses NumPy's SeedSequence → PCG64 hierarchy to guarantee:
  - Statistical independence between named streams
  - Bit-exact replay with the same master seed
  - Adding/removing replicates doesn't affect other replicates' streams

References:
  - NumPy docs: numpy.random.SeedSequence
"""

from __future__ import annotations

from typing import Dict

import numpy as np

# Fixed streams, spawned before any replicate streams.
STREAM_NAMES = ('global', 'drift', 'events')


def create_rng_hierarchy(
    master_seed: int,
    n_replicates: int = 0,
) -> Dict[str, np.random.Generator]:
    """Create independent RNG streams for a run and its replicates.

    Streams created:
      - 'global':  Population initialization
      - 'drift':   Generation stepping (selection, mating, migration)
      - 'events':  Scripted events (bottleneck culling)
      - 'replicate_0' .. 'replicate_{n-1}': one stream per ensemble member

    Args:
        master_seed: Master RNG seed (non-negative integer).
        n_replicates: Number of replicate streams.

    Returns:
        Dictionary mapping stream names to numpy Generator instances.

    Example:
        >>> rngs = create_rng_hierarchy(42, n_replicates=10)
        >>> rngs['drift'].random()  # reproducible
    """
    ss = np.random.SeedSequence(master_seed)
    child_seeds = ss.spawn(n_replicates + len(STREAM_NAMES))

    rngs: Dict[str, np.random.Generator] = {
        name: np.random.Generator(np.random.PCG64(child_seeds[i]))
        for i, name in enumerate(STREAM_NAMES)
    }
    offset = len(STREAM_NAMES)
    for i in range(n_replicates):
        rngs[f'replicate_{i}'] = np.random.Generator(
            np.random.PCG64(child_seeds[offset + i])
        )

    return rngs


def get_replicate_rng(
    rngs: Dict[str, np.random.Generator],
    replicate: int,
) -> np.random.Generator:
    """Get the RNG stream for one replicate.

    Raises:
        KeyError: If the replicate doesn't have a stream.
    """
    key = f'replicate_{replicate}'
    if key not in rngs:
        n = sum(1 for k in rngs if k.startswith('replicate_'))
        raise KeyError(
            f"No RNG stream for replicate {replicate} "
            f"({n} replicate streams available)"
        )
    return rngs[key]


def rng_state_snapshot(
    rngs: Dict[str, np.random.Generator],
) -> Dict[str, dict]:
    """Capture full RNG state so a run can be replayed from this point."""
    return {name: rng.bit_generator.state for name, rng in rngs.items()}


def restore_rng_state(
    rngs: Dict[str, np.random.Generator],
    states: Dict[str, dict],
) -> None:
    """Restore RNG state from a snapshot.

    Raises:
        KeyError: If a stream in states doesn't exist in rngs.
    """
    for name, state in states.items():
        if name not in rngs:
            raise KeyError(f"Cannot restore RNG state for unknown stream '{name}'")
        rngs[name].bit_generator.state = state
