"""Scripted population events.

Each event is a whole-step edit applied between generation ticks: it
may replace the population list and/or override parameter fields.

  bottleneck  keep each individual with P = 0.1; if fewer than 5 remain,
              keep the first 5 of the pre-event population instead;
              population_size := resulting count
  sweep       fitness (AA, Aa, aa) := (1.0, 0.8, 0.2)
  radiation   mutation_rate := 0.02
  founder     keep the first 15 individuals; population_size := 15,
              migration_rate := 0
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence, Union

import numpy as np

from chimpevo.types import Individual, LogLevel, Population, SimulationParams


BOTTLENECK_SURVIVAL: float = 0.1
BOTTLENECK_MIN_KEEP: int = 5
SWEEP_FITNESS = (1.0, 0.8, 0.2)    # (AA, Aa, aa)
RADIATION_MUTATION_RATE: float = 0.02
FOUNDER_SIZE: int = 15


class EventKind(str, Enum):
    BOTTLENECK = 'bottleneck'
    SWEEP = 'sweep'
    RADIATION = 'radiation'
    FOUNDER = 'founder'

    @classmethod
    def parse(cls, kind: Union[str, 'EventKind']) -> 'EventKind':
        if isinstance(kind, cls):
            return kind
        try:
            return cls(str(kind).strip().lower())
        except ValueError:
            valid = ', '.join(k.value for k in cls)
            raise ValueError(
                f"Unknown event '{kind}'; expected one of: {valid}"
            ) from None


@dataclass
class EventOutcome:
    """Population and parameters after an event, plus its log line."""
    population: Population
    params: SimulationParams
    message: str
    level: LogLevel


def bottleneck(
    population: Sequence[Individual],
    params: SimulationParams,
    rng: np.random.Generator,
) -> EventOutcome:
    keep = rng.random(len(population)) < BOTTLENECK_SURVIVAL
    survivors = [ind for ind, k in zip(population, keep.tolist()) if k]
    if len(survivors) < BOTTLENECK_MIN_KEEP:
        survivors = list(population[:BOTTLENECK_MIN_KEEP])
    return EventOutcome(
        population=survivors,
        params=params.replace(population_size=len(survivors)),
        message=f"EVENT: Bottleneck. N={len(survivors)}",
        level=LogLevel.DANGER,
    )


def sweep(population, params, rng=None) -> EventOutcome:
    w_AA, w_Aa, w_aa = SWEEP_FITNESS
    return EventOutcome(
        population=list(population),
        params=params.replace(fitness_AA=w_AA, fitness_Aa=w_Aa, fitness_aa=w_aa),
        message="EVENT: Strong selection (dark coat).",
        level=LogLevel.WARNING,
    )


def radiation(population, params, rng=None) -> EventOutcome:
    return EventOutcome(
        population=list(population),
        params=params.replace(mutation_rate=RADIATION_MUTATION_RATE),
        message=f"EVENT: Radiation (u={RADIATION_MUTATION_RATE}).",
        level=LogLevel.WARNING,
    )


def founder(population, params, rng=None) -> EventOutcome:
    return EventOutcome(
        population=list(population[:FOUNDER_SIZE]),
        params=params.replace(population_size=FOUNDER_SIZE, migration_rate=0.0),
        message=f"EVENT: Founder effect (N={FOUNDER_SIZE}).",
        level=LogLevel.INFO,
    )


_HANDLERS = {
    EventKind.BOTTLENECK: bottleneck,
    EventKind.SWEEP: sweep,
    EventKind.RADIATION: radiation,
    EventKind.FOUNDER: founder,
}


def apply_event(
    kind: Union[str, EventKind],
    population: Sequence[Individual],
    params: SimulationParams,
    rng: np.random.Generator,
) -> EventOutcome:
    """Apply a scripted event. The inputs are not modified.

    Raises:
        ValueError: If ``kind`` is not a known event.
    """
    return _HANDLERS[EventKind.parse(kind)](population, params, rng)
