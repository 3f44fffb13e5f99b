"""Command-line runner.

Usage:
    chimpevo                                  # defaults
    chimpevo configs/default.yaml --generations 200 --seed 7
    chimpevo --event 20:bottleneck --event 40:sweep --summary
    chimpevo --replicates 50 --population-size 50
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Dict, List, Optional, Sequence

import numpy as np

from chimpevo.config import (
    ScheduledEvent,
    SimulationConfig,
    load_config,
    validate_config,
)
from chimpevo.genetics import hardy_weinberg_test, interpret_fixation_index
from chimpevo.model import Simulation, run_replicates, run_schedule
from chimpevo.narrative import NullSummarizer, Summarizer, summarizer_from_env
from chimpevo.types import GenerationStats, Individual

logger = logging.getLogger(__name__)


def parse_event(text: str) -> Dict:
    """'20:bottleneck' → {'generation': 20, 'kind': 'bottleneck'}."""
    gen, sep, kind = text.partition(':')
    if not sep or not kind:
        raise argparse.ArgumentTypeError(
            f"expected GENERATION:KIND, got '{text}'"
        )
    try:
        generation = int(gen)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"generation must be an integer, got '{gen}'"
        ) from None
    return {'generation': generation, 'kind': kind}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='chimpevo',
        description="Wright-Fisher simulation of coat-colour allele frequencies.",
        epilog="Example: chimpevo configs/default.yaml --event 30:founder --summary",
    )
    parser.add_argument(
        "config", nargs='?', default=None,
        help="Base YAML config (built-in defaults if omitted)",
    )
    parser.add_argument("--scenario", default=None, help="Scenario override YAML")
    parser.add_argument("--generations", type=int, default=None,
                        help="Number of generations to simulate")
    parser.add_argument("--seed", type=int, default=None, help="Master RNG seed")
    parser.add_argument("--population-size", type=int, default=None,
                        help="Target population size N")
    parser.add_argument("--event", type=parse_event, action='append', default=[],
                        metavar="GEN:KIND",
                        help="Schedule an event (bottleneck, sweep, radiation, founder)")
    parser.add_argument("--replicates", type=int, default=0,
                        help="Run R independent replicates instead of one trajectory")
    parser.add_argument("--summary", action='store_true',
                        help="Request a narrative summary at the end")
    parser.add_argument("-v", "--verbose", action='count', default=0,
                        help="-v for info logging, -vv for debug")
    return parser


def _cli_overrides(args: argparse.Namespace) -> Dict:
    overrides: Dict = {}
    if args.generations is not None:
        overrides.setdefault('simulation', {})['n_generations'] = args.generations
    if args.seed is not None:
        overrides.setdefault('simulation', {})['seed'] = args.seed
    if args.population_size is not None:
        overrides.setdefault('params', {})['population_size'] = args.population_size
    return overrides


def resolve_config(args: argparse.Namespace) -> SimulationConfig:
    """Merge file config, scenario and command-line flags, then validate."""
    config = load_config(args.config, args.scenario, _cli_overrides(args))
    if args.event:
        config.events.extend(
            ScheduledEvent(generation=ev["generation"], kind=ev["kind"])
            for ev in args.event
        )
        validate_config(config)
    return config


def make_summarizer(config: SimulationConfig) -> Summarizer:
    nar = config.narrative
    if nar.backend == 'gemini':
        return summarizer_from_env(
            model=nar.model, api_key_env=nar.api_key_env, timeout_s=nar.timeout_s,
        )
    return NullSummarizer()


# ═══════════════════════════════════════════════════════════════════════
# OUTPUT
# ═══════════════════════════════════════════════════════════════════════

HEADER = f"{'Gen':>5} {'N':>6} {'p(A)':>8} {'E[p]':>8} {'Ho':>7} {'He':>7} {'F':>8}"


def format_row(s: GenerationStats, precision: int = 4) -> str:
    d = precision
    return (
        f"{s.generation:>5} {s.total_population:>6} {s.freq_A:>8.{d}f} "
        f"{s.expected_freq_A:>8.{d}f} {s.heterozygosity_obs:>7.3f} "
        f"{s.heterozygosity_exp:>7.3f} {s.fixation_index:>8.3f}"
    )


def print_history(history: Sequence[GenerationStats], every: int,
                  precision: int) -> None:
    print(HEADER)
    print('-' * len(HEADER))
    last = len(history) - 1
    for i, s in enumerate(history):
        if s.generation % every == 0 or i == last:
            print(format_row(s, precision))


def print_hardy_weinberg(population: Sequence[Individual],
                         fixation_index: float) -> None:
    """Observed vs expected genotype counts, chi-square and F label."""
    hwe = hardy_weinberg_test(population)
    observed = hwe.observed * hwe.n
    expected = hwe.expected * hwe.n
    print("Hardy-Weinberg (AA / Aa / aa):")
    print(f"  observed {observed[0]:.0f} / {observed[1]:.0f} / {observed[2]:.0f}")
    print(f"  expected {expected[0]:.1f} / {expected[1]:.1f} / {expected[2]:.1f}")
    print(f"  chi2={hwe.chi2:.3f} (df=1, p={hwe.p_value:.3g})")
    print(f"  F={fixation_index:.3f}: {interpret_fixation_index(fixation_index)}")


# ═══════════════════════════════════════════════════════════════════════
# RUNNERS
# ═══════════════════════════════════════════════════════════════════════

def run_single(config: SimulationConfig, summary: bool = False) -> Simulation:
    sim = Simulation(
        config.params.to_params(),
        seed=config.simulation.seed,
        summarizer=make_summarizer(config),
    )
    run_schedule(sim, config.simulation.n_generations, config.event_schedule())

    print_history(sim.history, config.output.every, config.output.precision)

    print("\nEvent log:")
    for entry in sim.log:
        print(f"  [{entry.generation:03d}] ({entry.level.value}) {entry.message}")

    if sim.is_extinct:
        print(f"\nPopulation went extinct at generation {sim.generation}.")
    else:
        final = sim.current_stats
        print(f"\nFinal: N={final.total_population}, p(A)={final.freq_A:.4f}, "
              f"E[p]={final.expected_freq_A:.4f}")
        print_hardy_weinberg(sim.population, final.fixation_index)

    if summary:
        print("\nNarrative summary:")
        print(sim.summarize())
    return sim


def run_ensemble(config: SimulationConfig, n_replicates: int) -> None:
    if config.events:
        logger.warning("Scheduled events are ignored in replicate mode")
    result = run_replicates(
        config.params.to_params(),
        n_generations=config.simulation.n_generations,
        n_replicates=n_replicates,
        seed=config.simulation.seed,
    )
    mean, sd = result.mean_freq_A, result.std_freq_A
    every = config.output.every

    header = f"{'Gen':>5} {'mean p(A)':>10} {'sd':>8} {'E[p]':>8} {'alive':>6}"
    print(header)
    print('-' * len(header))
    alive = np.sum(~np.isnan(result.freq_A), axis=0)
    last = len(mean) - 1
    for t in range(len(mean)):
        if t % every == 0 or t == last:
            print(f"{t:>5} {mean[t]:>10.4f} {sd[t]:>8.4f} "
                  f"{result.theoretical[t]:>8.4f} {int(alive[t]):>6}")
    print(f"\n{result.n_extinct}/{result.n_replicates} replicates went extinct.")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        config = resolve_config(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    if args.replicates > 0:
        run_ensemble(config, args.replicates)
    else:
        run_single(config, summary=args.summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
