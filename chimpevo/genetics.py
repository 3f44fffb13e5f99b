"""Genetics engine for ChimpEvo: one biallelic locus, Wright-Fisher dynamics.

Core responsibilities:
  - Initial population construction (independent allele draws at p0)
  - One-generation update: viability selection → random mating with
    drift and mutation → migration (gene-flow replacement)
  - Summary statistics (allele frequencies, genotype counts, Ho, He, F)
  - Deterministic infinite-population recursion used as the theoretical
    baseline, and its iterated trajectory
  - Hardy-Weinberg chi-square test and fixation-index interpretation

Every stochastic function takes an explicit numpy Generator. Nothing in
this module holds state between calls: the theoretical frequency is
owned by the caller (see ``chimpevo.model.Simulation``).

Extinction (fewer than 2 selection survivors) is reported as an empty
population, never as an exception.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

import numpy as np
from scipy import stats as sp_stats

from chimpevo.types import (
    Genotype,
    GenerationStats,
    Individual,
    Population,
    SimulationParams,
)


# ═══════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

MIGRANT_FREQ_A: float = 0.5        # allele A frequency in the migrant source pool
MIN_BREEDERS: int = 2              # fewer selection survivors → extinction

# Fixation-index bands (see interpret_fixation_index)
F_DEFICIT: float = 0.1
F_STRONG_FIXATION: float = 0.5
F_EXCESS: float = -0.1

F_EQUILIBRIUM_LABEL = "Equilibrium"
F_DEFICIT_LABEL = "Heterozygote deficit"
F_STRONG_FIXATION_LABEL = "Strong fixation"
F_EXCESS_LABEL = "Heterozygote excess"

_GENOTYPES = (Genotype.aa, Genotype.Aa, Genotype.AA)


# ═══════════════════════════════════════════════════════════════════════
# ARRAY HELPERS
# ═══════════════════════════════════════════════════════════════════════


def genotype_array(population: Sequence[Individual]) -> np.ndarray:
    """A-allele counts (0/1/2) of a population as an int8 array."""
    return np.fromiter(
        (int(ind.genotype) for ind in population),
        dtype=np.int8,
        count=len(population),
    )


def _to_individuals(n_A: np.ndarray) -> Population:
    return [Individual(_GENOTYPES[g]) for g in n_A.tolist()]


def draw_genotypes(n: int, p: float, rng: np.random.Generator) -> np.ndarray:
    """Draw ``n`` diploid genotypes from independent gametes.

    Each of the two gametes is A when its own uniform draw is < p, so
    the two copies are sampled separately rather than as a pair.

    Returns:
        (n,) int8 array of A-allele counts.
    """
    alleles = rng.random((n, 2)) < p
    return alleles.sum(axis=1).astype(np.int8)


# ═══════════════════════════════════════════════════════════════════════
# POPULATION FACTORY
# ═══════════════════════════════════════════════════════════════════════


def create_initial_population(
    size: int,
    p: float,
    rng: np.random.Generator,
) -> Population:
    """Build a founding population with allele A at frequency ``p``.

    Args:
        size: Number of individuals (0 gives an empty population).
        p: Probability that each gamete carries A.
        rng: Random generator.

    Returns:
        List of ``size`` new Individuals.
    """
    return _to_individuals(draw_genotypes(int(size), p, rng))


# ═══════════════════════════════════════════════════════════════════════
# GENERATION STEPPER
# ═══════════════════════════════════════════════════════════════════════


def select_survivors(
    population: Sequence[Individual],
    params: SimulationParams,
    rng: np.random.Generator,
) -> Population:
    """Viability selection: keep each individual with P = w(genotype).

    The test is ``uniform < fitness``, so fitness > 1 always survives and
    fitness <= 0 never does.
    """
    geno = genotype_array(population)
    w = np.asarray(params.fitness_table(), dtype=np.float64)[geno]
    keep = rng.random(len(geno)) < w
    return [ind for ind, k in zip(population, keep.tolist()) if k]


def reproduce(
    survivors: Sequence[Individual],
    params: SimulationParams,
    rng: np.random.Generator,
) -> Population:
    """Random mating with replacement, Mendelian gametes, then mutation.

    Each offspring draws two parents uniformly from ``survivors`` (the
    same parent may be drawn twice). A homozygous parent transmits its
    allele; a heterozygote transmits A with probability 1/2. Each
    gamete then flips A↔a with probability ``mutation_rate``.

    Args:
        survivors: Non-empty breeding pool.
        params: Parameter snapshot (population_size, mutation_rate).
        rng: Random generator.

    Returns:
        Exactly ``params.population_size`` new Individuals.
    """
    n_offspring = int(params.population_size)
    parent_geno = genotype_array(survivors)

    parents = rng.integers(0, len(parent_geno), size=(n_offspring, 2))
    # P(gamete = A) is n_A / 2: 0 for aa, 1/2 for Aa, 1 for AA
    p_transmit_A = parent_geno[parents] / 2.0
    gametes = rng.random((n_offspring, 2)) < p_transmit_A

    mutated = rng.random((n_offspring, 2)) < params.mutation_rate
    gametes ^= mutated

    return _to_individuals(gametes.sum(axis=1).astype(np.int8))


def migrate(
    population: Sequence[Individual],
    params: SimulationParams,
    rng: np.random.Generator,
) -> Population:
    """Gene flow: overwrite floor(N·m) random slots with migrants.

    Migrants come from a balanced source pool (p = MIGRANT_FREQ_A).
    Slots are drawn with replacement; when a slot is hit twice the later
    migrant wins. Population size is unchanged.
    """
    result = list(population)
    n_migrants = int(math.floor(params.population_size * params.migration_rate))
    if n_migrants <= 0 or not result:
        return result

    slots = rng.integers(0, len(result), size=n_migrants)
    migrant_geno = draw_genotypes(n_migrants, MIGRANT_FREQ_A, rng)
    for slot, g in zip(slots.tolist(), migrant_geno.tolist()):
        result[slot] = Individual(_GENOTYPES[g])
    return result


def step(
    population: Sequence[Individual],
    params: SimulationParams,
    rng: np.random.Generator,
) -> Population:
    """Advance one generation: selection → reproduction → migration.

    Returns an empty list (extinction) when fewer than two individuals
    survive selection; the later phases are skipped in that case.
    Stepping an empty population therefore returns empty again.
    """
    survivors = select_survivors(population, params, rng)
    if len(survivors) < MIN_BREEDERS:
        return []

    offspring = reproduce(survivors, params, rng)
    return migrate(offspring, params, rng)


# ═══════════════════════════════════════════════════════════════════════
# STATISTICS ENGINE
# ═══════════════════════════════════════════════════════════════════════


def genotype_counts(population: Sequence[Individual]) -> Tuple[int, int, int]:
    """Return (count_AA, count_Aa, count_aa)."""
    counts = np.bincount(genotype_array(population), minlength=3)
    return int(counts[Genotype.AA]), int(counts[Genotype.Aa]), int(counts[Genotype.aa])


def compute_stats(
    population: Sequence[Individual],
    generation: int,
    theoretical_p: Optional[float] = None,
) -> GenerationStats:
    """Reduce a population snapshot to a GenerationStats record.

    Args:
        population: Current individuals (may be empty).
        generation: Generation index to stamp on the record.
        theoretical_p: Externally tracked deterministic frequency. When
            None the observed frequency is used instead.

    Returns:
        GenerationStats. Ratios collapse to 0 for an empty population,
        and F is 0 when expected heterozygosity is 0.
    """
    count_AA, count_Aa, count_aa = genotype_counts(population)
    total = count_AA + count_Aa + count_aa

    freq_A = 0.0 if total == 0 else (2 * count_AA + count_Aa) / (2 * total)
    freq_a = 1.0 - freq_A

    het_obs = 0.0 if total == 0 else count_Aa / total
    het_exp = 2.0 * freq_A * freq_a
    fixation_index = 0.0 if het_exp == 0 else 1.0 - het_obs / het_exp

    return GenerationStats(
        generation=generation,
        freq_A=freq_A,
        freq_a=freq_a,
        count_AA=count_AA,
        count_Aa=count_Aa,
        count_aa=count_aa,
        expected_freq_A=freq_A if theoretical_p is None else theoretical_p,
        total_population=total,
        heterozygosity_obs=het_obs,
        heterozygosity_exp=het_exp,
        fixation_index=fixation_index,
    )


# ═══════════════════════════════════════════════════════════════════════
# DETERMINISTIC RECURSION
# ═══════════════════════════════════════════════════════════════════════


def mean_fitness(p: float, params: SimulationParams) -> float:
    """W̄ = p²·wAA + 2pq·wAa + q²·waa."""
    q = 1.0 - p
    return (
        p * p * params.fitness_AA
        + 2.0 * p * q * params.fitness_Aa
        + q * q * params.fitness_aa
    )


def next_theoretical_p(current_p: float, params: SimulationParams) -> float:
    """Expected frequency of A after one generation in an infinite population.

    Selection:  p'   = (p²·wAA + pq·wAa) / W̄     (0 if W̄ == 0)
    Mutation:   p''  = p'·(1 − u) + (1 − p')·u
    Migration:  p''' = p''·(1 − m) + 0.5·m
    """
    p = current_p
    q = 1.0 - p
    w_bar = mean_fitness(p, params)
    if w_bar == 0:
        return 0.0

    next_p = (p * p * params.fitness_AA + p * q * params.fitness_Aa) / w_bar

    u = params.mutation_rate
    next_p = next_p * (1.0 - u) + (1.0 - next_p) * u

    m = params.migration_rate
    next_p = next_p * (1.0 - m) + MIGRANT_FREQ_A * m

    return next_p


def theoretical_trajectory(
    p0: float,
    params: SimulationParams,
    n_generations: int,
) -> np.ndarray:
    """Iterate the recursion: returns (n_generations + 1,) with p0 first."""
    traj = np.empty(n_generations + 1, dtype=np.float64)
    traj[0] = p0
    p = p0
    for t in range(1, n_generations + 1):
        p = next_theoretical_p(p, params)
        traj[t] = p
    return traj


# ═══════════════════════════════════════════════════════════════════════
# HARDY-WEINBERG EQUILIBRIUM TEST
# ═══════════════════════════════════════════════════════════════════════


@dataclass
class HardyWeinbergResult:
    """Observed vs HWE-expected genotype frequencies, ordered (AA, Aa, aa)."""
    n: int = 0
    observed: np.ndarray = field(default_factory=lambda: np.zeros(3))
    expected: np.ndarray = field(default_factory=lambda: np.zeros(3))
    chi2: float = 0.0
    p_value: float = 1.0


def interpret_fixation_index(fixation_index: float) -> str:
    """Label F: > 0.5 strong fixation, > 0.1 deficit, < -0.1 excess."""
    if fixation_index > F_STRONG_FIXATION:
        return F_STRONG_FIXATION_LABEL
    if fixation_index > F_DEFICIT:
        return F_DEFICIT_LABEL
    if fixation_index < F_EXCESS:
        return F_EXCESS_LABEL
    return F_EQUILIBRIUM_LABEL


def hardy_weinberg_test(population: Sequence[Individual]) -> HardyWeinbergResult:
    """Chi-square goodness of fit to (p², 2pq, q²) with 1 degree of freedom.

    Populations with fewer than two individuals return an all-zero
    result with p_value 1.0. Genotype classes with zero expectation
    (monomorphic locus) contribute nothing to the statistic.

    Expected counts are exact (n·p², n·2pq, n·q²), not rounded to whole
    animals, so chi2 differs slightly from a statistic built on rounded
    expectations.
    """
    counts = np.array(genotype_counts(population), dtype=np.float64)
    n = int(counts.sum())
    result = HardyWeinbergResult(n=n)
    if n < 2:
        return result

    p = (2.0 * counts[0] + counts[1]) / (2.0 * n)
    q = 1.0 - p
    result.observed = counts / n
    result.expected = np.array([p * p, 2.0 * p * q, q * q])

    exp_counts = result.expected * n
    valid = exp_counts > 0
    chi2 = float(np.sum((counts[valid] - exp_counts[valid]) ** 2 / exp_counts[valid]))
    result.chi2 = chi2
    result.p_value = float(sp_stats.chi2.sf(chi2, df=1))
    return result
