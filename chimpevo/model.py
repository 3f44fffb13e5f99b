"""Simulation driver: the loop that feeds the genetics engine.

Owns everything the engine is deliberately free of:
  - the current population and parameter snapshot
  - the theoretical (deterministic) frequency, advanced in lock-step
    with the stochastic population
  - the append-only statistics history and the event log
  - extinction detection (logged exactly once; stepping then stops)
  - scripted events applied between ticks
  - the optional narrative summarizer
  - checkpoints (driver plus RNG state) for exact replay

Also provides batch entry points:
  - run_schedule(): step a driver while firing scheduled events
  - run_simulation(): one trajectory with a schedule of events
  - run_replicates(): an ensemble of independent trajectories, for
    comparing mean drift against the deterministic expectation
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Union

import numpy as np

from chimpevo import genetics
from chimpevo.events import EventKind, apply_event
from chimpevo.genetics import (
    compute_stats,
    create_initial_population,
    next_theoretical_p,
    theoretical_trajectory,
)
from chimpevo.narrative import NullSummarizer, Summarizer
from chimpevo.rng import (
    create_rng_hierarchy,
    get_replicate_rng,
    restore_rng_state,
    rng_state_snapshot,
)
from chimpevo.types import (
    GenerationStats,
    LogEntry,
    LogLevel,
    Population,
    SimulationParams,
)

logger = logging.getLogger(__name__)

MSG_INITIALIZED = "Simulation initialized."
MSG_EXTINCT = "Population extinct!"


# ═══════════════════════════════════════════════════════════════════════
# RESULTS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimResult:
    """Timeseries of one run (one row per recorded generation)."""
    params: SimulationParams = field(default_factory=SimulationParams)
    generations: Optional[np.ndarray] = None          # (T,) int
    freq_A: Optional[np.ndarray] = None               # (T,) observed p
    expected_freq_A: Optional[np.ndarray] = None      # (T,) deterministic p
    genotype_counts: Optional[np.ndarray] = None      # (T, 3) AA, Aa, aa
    total_population: Optional[np.ndarray] = None     # (T,)
    heterozygosity_obs: Optional[np.ndarray] = None
    heterozygosity_exp: Optional[np.ndarray] = None
    fixation_index: Optional[np.ndarray] = None
    log: List[LogEntry] = field(default_factory=list)

    # Summary
    extinct: bool = False
    extinction_generation: Optional[int] = None
    final_generation: int = 0

    @classmethod
    def from_history(
        cls,
        history: Iterable[GenerationStats],
        params: SimulationParams,
        **summary,
    ) -> 'SimResult':
        rows = list(history)
        return cls(
            params=params,
            generations=np.array([s.generation for s in rows], dtype=np.int64),
            freq_A=np.array([s.freq_A for s in rows], dtype=np.float64),
            expected_freq_A=np.array([s.expected_freq_A for s in rows], dtype=np.float64),
            genotype_counts=np.array(
                [(s.count_AA, s.count_Aa, s.count_aa) for s in rows], dtype=np.int64,
            ).reshape(len(rows), 3),
            total_population=np.array([s.total_population for s in rows], dtype=np.int64),
            heterozygosity_obs=np.array([s.heterozygosity_obs for s in rows], dtype=np.float64),
            heterozygosity_exp=np.array([s.heterozygosity_exp for s in rows], dtype=np.float64),
            fixation_index=np.array([s.fixation_index for s in rows], dtype=np.float64),
            **summary,
        )


@dataclass
class Checkpoint:
    """Driver state captured by ``Simulation.checkpoint()``.

    Individuals, stats records and params are immutable, so shallow
    list copies are enough to decouple it from the live driver.
    """
    generation: int
    params: SimulationParams
    population: Population
    theoretical_p: float
    is_extinct: bool
    history: List[GenerationStats]
    log: List[LogEntry]
    rng_states: Dict[str, dict]


@dataclass
class ReplicateResult:
    """Observed freq_A of independent replicates (NaN after extinction)."""
    params: SimulationParams
    freq_A: np.ndarray                 # (n_replicates, n_generations + 1)
    theoretical: np.ndarray            # (n_generations + 1,)
    extinction_generation: np.ndarray  # (n_replicates,) -1 if never extinct

    @property
    def n_replicates(self) -> int:
        return self.freq_A.shape[0]

    @property
    def n_extinct(self) -> int:
        return int(np.sum(self.extinction_generation >= 0))

    def _alive_count(self) -> np.ndarray:
        return np.sum(~np.isnan(self.freq_A), axis=0)

    @property
    def mean_freq_A(self) -> np.ndarray:
        """Across-replicate mean per generation, over surviving replicates."""
        n = self._alive_count()
        with np.errstate(invalid='ignore', divide='ignore'):
            return np.where(n > 0, np.nansum(self.freq_A, axis=0) / n, np.nan)

    @property
    def std_freq_A(self) -> np.ndarray:
        n = self._alive_count()
        mean = self.mean_freq_A
        sq = np.nansum((self.freq_A - mean) ** 2, axis=0)
        with np.errstate(invalid='ignore', divide='ignore'):
            return np.where(n > 0, np.sqrt(sq / n), np.nan)


# ═══════════════════════════════════════════════════════════════════════
# DRIVER
# ═══════════════════════════════════════════════════════════════════════


class Simulation:
    """Interactive driver around the genetics engine.

    Each generation step is atomic: ``play()`` only checks its stop
    conditions between steps, and ``trigger_event()`` halts play before
    editing the population.

    Args:
        params: Initial parameter snapshot (defaults if None).
        seed: Master seed for the RNG hierarchy (fresh entropy if None).
        rngs: Pre-built hierarchy from ``create_rng_hierarchy``; takes
            precedence over ``seed``.
        summarizer: Narrative collaborator (NullSummarizer if None).
    """

    def __init__(
        self,
        params: Optional[SimulationParams] = None,
        seed: Optional[int] = None,
        rngs: Optional[Dict[str, np.random.Generator]] = None,
        summarizer: Optional[Summarizer] = None,
    ):
        self.params = params if params is not None else SimulationParams()
        self.rngs = rngs if rngs is not None else create_rng_hierarchy(seed)
        self.summarizer = summarizer if summarizer is not None else NullSummarizer()

        self.population: Population = []
        self.history: List[GenerationStats] = []
        self.log: List[LogEntry] = []
        self.generation = 0
        self.theoretical_p = self.params.initial_freq_a
        self.is_extinct = False
        self.is_playing = False
        self.reset()

    # ── state ─────────────────────────────────────────────────────────

    @property
    def current_stats(self) -> GenerationStats:
        if self.history:
            return self.history[-1]
        return compute_stats([], self.generation, 0.0)

    def add_log(self, message: str, level: LogLevel = LogLevel.INFO,
                generation: Optional[int] = None) -> LogEntry:
        entry = LogEntry(
            generation=self.generation if generation is None else generation,
            message=message,
            level=level,
        )
        self.log.append(entry)
        return entry

    def reset(self) -> None:
        """Back to generation 0 with a freshly drawn population."""
        self.is_playing = False
        p0 = self.params.initial_freq_a
        self.population = create_initial_population(
            self.params.population_size, p0, self.rngs['global'],
        )
        self.generation = 0
        self.theoretical_p = p0
        self.is_extinct = False
        self.history = [compute_stats(self.population, 0, p0)]
        self.log = []
        self.add_log(MSG_INITIALIZED, LogLevel.INFO)
        logger.info("Reset: N=%d, p0=%.3f", self.params.population_size, p0)

    def set_params(self, params: SimulationParams) -> None:
        """Swap the parameter snapshot; at generation 0 p0 changes track too."""
        self.params = params
        if self.generation == 0:
            self.theoretical_p = params.initial_freq_a

    # ── time ──────────────────────────────────────────────────────────

    def step(self, n: int = 1) -> List[GenerationStats]:
        """Advance up to ``n`` generations, stopping early on extinction.

        Returns the new history records (none for the extinct generation).
        """
        if self.is_extinct:
            return []

        population = self.population
        p_theo = self.theoretical_p
        generation = self.generation
        new_records: List[GenerationStats] = []

        for _ in range(n):
            generation += 1
            p_theo = next_theoretical_p(p_theo, self.params)
            population = genetics.step(population, self.params, self.rngs['drift'])

            if not population:
                self._mark_extinct(generation)
                break

            stats = compute_stats(population, generation, p_theo)
            new_records.append(stats)
            logger.debug(
                "Generation %d: N=%d p=%.4f E[p]=%.4f F=%.4f",
                generation, stats.total_population, stats.freq_A,
                p_theo, stats.fixation_index,
            )

        self.theoretical_p = p_theo
        self.population = population
        self.history.extend(new_records)
        self.generation = generation
        return new_records

    def _mark_extinct(self, generation: int) -> None:
        self.is_extinct = True
        self.is_playing = False
        self.add_log(MSG_EXTINCT, LogLevel.DANGER, generation=generation)
        logger.warning("Population extinct at generation %d", generation)

    def play(
        self,
        max_generations: int,
        should_continue: Optional[Callable[['Simulation'], bool]] = None,
    ) -> List[GenerationStats]:
        """Step one generation at a time until a stop condition.

        Stops on extinction, after ``max_generations`` steps, when
        ``should_continue(sim)`` returns False, or when an event handler
        clears ``is_playing``.
        """
        records: List[GenerationStats] = []
        self.is_playing = True
        try:
            for _ in range(max_generations):
                if should_continue is not None and not should_continue(self):
                    break
                if not self.is_playing or self.is_extinct:
                    break
                new = self.step(1)
                if not new:
                    break
                records.extend(new)
        finally:
            self.is_playing = False
        return records

    # ── events ────────────────────────────────────────────────────────

    def trigger_event(self, kind: Union[str, EventKind]) -> LogEntry:
        """Apply a scripted event between ticks.

        The last history record is replaced (not appended) by stats of
        the edited population at the current generation.
        """
        self.is_playing = False
        outcome = apply_event(kind, self.population, self.params, self.rngs['events'])

        self.params = outcome.params
        self.population = outcome.population
        entry = self.add_log(outcome.message, outcome.level)
        logger.info("Generation %d: %s", self.generation, outcome.message)

        stats = compute_stats(self.population, self.generation, self.theoretical_p)
        if self.history:
            self.history[-1] = stats
        else:
            self.history.append(stats)
        return entry

    # ── checkpointing ─────────────────────────────────────────────────

    def checkpoint(self) -> Checkpoint:
        """Capture driver and RNG state for an exact replay."""
        return Checkpoint(
            generation=self.generation,
            params=self.params,
            population=list(self.population),
            theoretical_p=self.theoretical_p,
            is_extinct=self.is_extinct,
            history=list(self.history),
            log=list(self.log),
            rng_states=rng_state_snapshot(self.rngs),
        )

    def restore(self, checkpoint: Checkpoint) -> None:
        """Rewind to a checkpoint; later steps replay bit-for-bit.

        Raises:
            KeyError: If the checkpoint holds a stream this driver lacks.
        """
        restore_rng_state(self.rngs, checkpoint.rng_states)
        self.is_playing = False
        self.generation = checkpoint.generation
        self.params = checkpoint.params
        self.population = list(checkpoint.population)
        self.theoretical_p = checkpoint.theoretical_p
        self.is_extinct = checkpoint.is_extinct
        self.history = list(checkpoint.history)
        self.log = list(checkpoint.log)
        logger.info("Restored checkpoint at generation %d", self.generation)

    # ── outputs ───────────────────────────────────────────────────────

    def summarize(self) -> str:
        return self.summarizer.summarize(self.history, self.params)

    def to_result(self) -> SimResult:
        extinction_gen = None
        if self.is_extinct:
            extinction_gen = self.generation
        return SimResult.from_history(
            self.history,
            self.params,
            log=list(self.log),
            extinct=self.is_extinct,
            extinction_generation=extinction_gen,
            final_generation=self.generation,
        )


# ═══════════════════════════════════════════════════════════════════════
# BATCH RUNS
# ═══════════════════════════════════════════════════════════════════════

EventSchedule = Dict[int, Union[str, EventKind, List[Union[str, EventKind]]]]


def run_schedule(
    sim: Simulation,
    n_generations: int,
    events: Optional[EventSchedule] = None,
) -> Simulation:
    """Step ``sim`` up to generation ``n_generations``, firing scheduled events.

    Events scheduled at generation g are applied after generation g is
    recorded and before the step to g + 1; events at or beyond
    ``n_generations`` never fire. Stops early on extinction.
    """
    schedule = events or {}
    while sim.generation < n_generations and not sim.is_extinct:
        kinds = schedule.get(sim.generation, [])
        if not isinstance(kinds, list):
            kinds = [kinds]
        for kind in kinds:
            sim.trigger_event(kind)
        sim.step(1)
    return sim


def run_simulation(
    params: Optional[SimulationParams] = None,
    n_generations: int = 100,
    seed: int = 42,
    events: Optional[EventSchedule] = None,
    summarizer: Optional[Summarizer] = None,
) -> SimResult:
    """Run one trajectory for ``n_generations`` (or until extinction).

    See ``run_schedule`` for when scheduled events fire.

    Args:
        params: Parameter snapshot (defaults if None).
        n_generations: Number of generations to advance.
        seed: Master RNG seed.
        events: Mapping generation → event kind (or list of kinds).
        summarizer: Optional narrative collaborator.

    Returns:
        SimResult with one row per recorded generation.
    """
    sim = Simulation(params, seed=seed, summarizer=summarizer)
    run_schedule(sim, n_generations, events)
    return sim.to_result()


def run_replicates(
    params: Optional[SimulationParams] = None,
    n_generations: int = 100,
    n_replicates: int = 20,
    seed: int = 42,
) -> ReplicateResult:
    """Independent replicates on separate RNG streams.

    Each replicate starts from its own founding population. Observed
    freq_A after extinction is NaN.
    """
    if params is None:
        params = SimulationParams()
    rngs = create_rng_hierarchy(seed, n_replicates=n_replicates)

    freq = np.full((n_replicates, n_generations + 1), np.nan, dtype=np.float64)
    extinct_at = np.full(n_replicates, -1, dtype=np.int64)

    for i in range(n_replicates):
        rng = get_replicate_rng(rngs, i)
        population = create_initial_population(
            params.population_size, params.initial_freq_a, rng,
        )
        freq[i, 0] = compute_stats(population, 0).freq_A
        for t in range(1, n_generations + 1):
            population = genetics.step(population, params, rng)
            if not population:
                extinct_at[i] = t
                break
            freq[i, t] = compute_stats(population, t).freq_A

    logger.info(
        "Ran %d replicates x %d generations (%d extinct)",
        n_replicates, n_generations, int(np.sum(extinct_at >= 0)),
    )
    return ReplicateResult(
        params=params,
        freq_A=freq,
        theoretical=theoretical_trajectory(params.initial_freq_a, params, n_generations),
        extinction_generation=extinct_at,
    )
