"""Core data types for ChimpEvo.

This module is the SINGLE SOURCE OF TRUTH for:
  - Genotype and Allele enumerations (one biallelic locus, A dominant)
  - Individual: immutable record of one animal
  - SimulationParams: per-step parameter snapshot
  - GenerationStats: per-generation summary record
  - LogEntry / LogLevel: event-log records produced by the driver

All modules import these types from here. No other module defines
population fields.

Genotype values are the count of A alleles (aa=0, Aa=1, AA=2) so that
vectorized code can add gametes directly.
"""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, List


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class Allele(IntEnum):
    """Gene variants at the coat-colour locus."""
    a = 0   # recessive, light coat
    A = 1   # dominant, dark coat


class Genotype(IntEnum):
    """Diploid genotype, valued by its number of A alleles."""
    aa = 0
    Aa = 1
    AA = 2

    @property
    def label(self) -> str:
        return self.name

    @classmethod
    def from_alleles(cls, allele1: int, allele2: int) -> 'Genotype':
        """Combine two gametes: both A → AA, both a → aa, else Aa."""
        return cls(int(allele1) + int(allele2))

    @classmethod
    def parse(cls, label: str) -> 'Genotype':
        """Look a genotype up by its label ('AA', 'Aa', 'aa')."""
        try:
            return cls[label]
        except KeyError:
            raise ValueError(f"Unknown genotype '{label}'") from None


class LogLevel(str, Enum):
    """Severity of a driver log entry (mirrors the UI colour coding)."""
    INFO = 'info'
    DANGER = 'danger'
    SUCCESS = 'success'
    WARNING = 'warning'


# ═══════════════════════════════════════════════════════════════════════
# PHENOTYPES
# ═══════════════════════════════════════════════════════════════════════

PHENOTYPE_LIGHT = 'Light coat (recessive)'
PHENOTYPE_DARK = 'Dark coat (dominant)'


def phenotype_of(genotype: Genotype) -> str:
    """aa → light coat; AA and Aa → dark coat (complete dominance)."""
    return PHENOTYPE_LIGHT if genotype == Genotype.aa else PHENOTYPE_DARK


def new_id() -> str:
    """Opaque unique identity token."""
    return uuid.uuid4().hex


# ═══════════════════════════════════════════════════════════════════════
# INDIVIDUALS & POPULATIONS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Individual:
    """One animal. Immutable; owned by the population list holding it."""
    genotype: Genotype
    id: str = field(default_factory=new_id)

    @property
    def phenotype(self) -> str:
        return phenotype_of(self.genotype)

    @property
    def n_A(self) -> int:
        """Number of A alleles carried (0, 1 or 2)."""
        return int(self.genotype)


# Order is insertion-stable only; it carries no biological meaning.
Population = List[Individual]


# ═══════════════════════════════════════════════════════════════════════
# PARAMETERS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SimulationParams:
    """Parameter snapshot for one generation step.

    Rates are probabilities in [0, 1] by convention. The engine trusts
    the snapshot; range checks belong to ``chimpevo.config``.
    """
    population_size: int = 100     # target N after reproduction
    initial_freq_a: float = 0.5    # p0 (frequency of allele A)
    fitness_AA: float = 1.0        # w11
    fitness_Aa: float = 1.0        # w12
    fitness_aa: float = 1.0        # w22
    mutation_rate: float = 0.001   # u = v, per allele per generation
    migration_rate: float = 0.0    # m, fraction of N replaced per generation

    def fitness(self, genotype: Genotype) -> float:
        """Viability of a genotype."""
        if genotype == Genotype.AA:
            return self.fitness_AA
        if genotype == Genotype.Aa:
            return self.fitness_Aa
        return self.fitness_aa

    def fitness_table(self):
        """Fitness indexed by genotype value: [w_aa, w_Aa, w_AA]."""
        return (self.fitness_aa, self.fitness_Aa, self.fitness_AA)

    def replace(self, **changes) -> 'SimulationParams':
        """Return a new snapshot with some fields overridden."""
        return dataclasses.replace(self, **changes)


# ═══════════════════════════════════════════════════════════════════════
# STATISTICS & LOG RECORDS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class GenerationStats:
    """Summary of one population snapshot. Append-only in history."""
    generation: int
    freq_A: float                  # p
    freq_a: float                  # q
    count_AA: int
    count_Aa: int
    count_aa: int
    expected_freq_A: float         # deterministic trajectory value
    total_population: int
    heterozygosity_obs: float      # Ho
    heterozygosity_exp: float      # He = 2pq
    fixation_index: float          # F = 1 - Ho/He

    def as_dict(self) -> Dict[str, float]:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class LogEntry:
    """One line of the simulation event log."""
    generation: int
    message: str
    level: LogLevel = LogLevel.INFO
    id: str = field(default_factory=new_id)
