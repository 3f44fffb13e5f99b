"""Configuration system for ChimpEvo.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → command-line overrides

This layer is where parameter sanitization happens. The genetics engine
trusts whatever SimulationParams it is handed; ``validate_config`` is
the gate that keeps out-of-range values from reaching it.
"""

from __future__ import annotations

import dataclasses
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from chimpevo.events import EventKind
from chimpevo.types import SimulationParams


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Run length and reproducibility."""
    seed: int = 42
    n_generations: int = 100


@dataclass
class ParamsSection:
    """Population-genetic parameters (see SimulationParams)."""
    population_size: int = 100
    initial_freq_a: float = 0.5
    fitness_AA: float = 1.0
    fitness_Aa: float = 1.0
    fitness_aa: float = 1.0
    mutation_rate: float = 0.001
    migration_rate: float = 0.0

    def to_params(self) -> SimulationParams:
        return SimulationParams(
            population_size=int(self.population_size),
            initial_freq_a=float(self.initial_freq_a),
            fitness_AA=float(self.fitness_AA),
            fitness_Aa=float(self.fitness_Aa),
            fitness_aa=float(self.fitness_aa),
            mutation_rate=float(self.mutation_rate),
            migration_rate=float(self.migration_rate),
        )


@dataclass
class ScheduledEvent:
    """A scripted event fired before the step that leaves ``generation``."""
    generation: int
    kind: str


@dataclass
class NarrativeSection:
    """Narrative summarizer settings."""
    backend: str = "none"            # "none" | "gemini"
    model: str = "gemini-2.5-flash"
    api_key_env: str = "GEMINI_API_KEY"
    timeout_s: float = 30.0


@dataclass
class OutputSection:
    """Console output control."""
    every: int = 10                  # print every k-th generation
    precision: int = 4


@dataclass
class SimulationConfig:
    """Complete run configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    params: ParamsSection = field(default_factory=ParamsSection)
    narrative: NarrativeSection = field(default_factory=NarrativeSection)
    output: OutputSection = field(default_factory=OutputSection)
    events: List[ScheduledEvent] = field(default_factory=list)

    def event_schedule(self) -> Dict[int, List[str]]:
        """Events grouped by generation, in file order."""
        schedule: Dict[int, List[str]] = {}
        for ev in self.events:
            schedule.setdefault(ev.generation, []).append(ev.kind)
        return schedule


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


def _yaml_to_config(data: Dict) -> SimulationConfig:
    """Convert a merged YAML dict to a SimulationConfig."""
    sections = {}
    section_map = {
        'simulation': SimulationSection,
        'params': ParamsSection,
        'narrative': NarrativeSection,
        'output': OutputSection,
    }
    for key, cls in section_map.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()

    # Scheduled events (top-level list, not a section)
    events = []
    if isinstance(data.get('events'), list):
        for ev in data['events']:
            if isinstance(ev, dict):
                events.append(_dict_to_section(ScheduledEvent, ev))
    sections['events'] = events

    return SimulationConfig(**sections)


def _check_probability(name: str, value: float) -> None:
    if not (0.0 <= value <= 1.0):
        raise ValueError(f"{name} must be in [0, 1], got {value}")


def _check_number(name: str, value: Any, integer: bool = False) -> None:
    kinds = (int,) if integer else (int, float)
    if isinstance(value, bool) or not isinstance(value, kinds):
        kind = "an integer" if integer else "a number"
        raise ValueError(f"{name} must be {kind}, got {value!r}")


_INTEGER_FIELDS = (
    ('simulation', 'seed'),
    ('simulation', 'n_generations'),
    ('params', 'population_size'),
    ('output', 'every'),
    ('output', 'precision'),
)
_NUMBER_FIELDS = (
    ('params', 'initial_freq_a'),
    ('params', 'fitness_AA'),
    ('params', 'fitness_Aa'),
    ('params', 'fitness_aa'),
    ('params', 'mutation_rate'),
    ('params', 'migration_rate'),
    ('narrative', 'timeout_s'),
)


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure.

    Numeric fields must hold YAML numbers (a quoted '50' is rejected).
    Fitness values above 1 are allowed (they always survive selection)
    but trigger a UserWarning.
    """
    for section, name in _INTEGER_FIELDS:
        _check_number(f"{section}.{name}", getattr(getattr(config, section), name),
                      integer=True)
    for section, name in _NUMBER_FIELDS:
        _check_number(f"{section}.{name}", getattr(getattr(config, section), name))
    for i, ev in enumerate(config.events):
        _check_number(f"events[{i}].generation", ev.generation, integer=True)

    sim = config.simulation
    if sim.seed < 0:
        raise ValueError("simulation.seed must be non-negative")
    if sim.n_generations < 0:
        raise ValueError(
            f"simulation.n_generations must be >= 0, got {sim.n_generations}"
        )

    p = config.params
    if p.population_size < 1:
        raise ValueError(
            f"params.population_size must be >= 1, got {p.population_size}"
        )
    _check_probability("params.initial_freq_a", p.initial_freq_a)
    _check_probability("params.mutation_rate", p.mutation_rate)
    _check_probability("params.migration_rate", p.migration_rate)

    for name in ('fitness_AA', 'fitness_Aa', 'fitness_aa'):
        w = getattr(p, name)
        if w < 0:
            raise ValueError(f"params.{name} must be >= 0, got {w}")
        if w > 1:
            warnings.warn(
                f"params.{name}={w} exceeds 1; that genotype always survives "
                f"selection.",
                UserWarning,
                stacklevel=2,
            )

    for i, ev in enumerate(config.events):
        if ev.generation < 0:
            raise ValueError(
                f"events[{i}].generation must be >= 0, got {ev.generation}"
            )
        try:
            EventKind.parse(ev.kind)
        except ValueError as e:
            raise ValueError(f"events[{i}]: {e}") from None

    valid_backends = {"none", "gemini"}
    if config.narrative.backend not in valid_backends:
        raise ValueError(
            f"narrative.backend must be one of {valid_backends}, "
            f"got '{config.narrative.backend}'"
        )
    if config.narrative.timeout_s <= 0:
        raise ValueError("narrative.timeout_s must be positive")

    if config.output.every < 1:
        raise ValueError(f"output.every must be >= 1, got {config.output.every}")


def load_config(
    base_path: Optional[Union[str, Path]] = None,
    scenario_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → overrides.
    Each layer overrides only the fields it specifies. With no base file
    the built-in defaults are the base layer.

    Raises:
        FileNotFoundError: If base_path or scenario_path is given but
            doesn't exist.
        ValueError: If validation fails.
    """
    config_dict: Dict = {}
    if base_path is not None:
        base_path = Path(base_path)
        if not base_path.exists():
            raise FileNotFoundError(f"Config file not found: {base_path}")
        with open(base_path) as f:
            config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if not scenario_path.exists():
            raise FileNotFoundError(f"Scenario file not found: {scenario_path}")
        with open(scenario_path) as f:
            scenario = yaml.safe_load(f) or {}
        deep_merge(config_dict, scenario)

    if overrides is not None:
        deep_merge(config_dict, overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config
