"""Tests for chimpevo.genetics — one-locus Wright-Fisher engine.

Acceptance criteria:
  - p = 1 founds an all-AA population; p = 0 an all-aa population
  - Genotype counts always sum to N; freq_A + freq_a = 1
  - He = 2·p·q exactly; He = 0 ⇒ F = 0
  - step() returns exactly N individuals, or [] on extinction (< 2 survivors)
  - Migration replaces slots, never inserts
  - Deterministic recursion is pure, bounded in [0, 1], fixed at p = 0 / 1
  - Neutral dynamics: flat theoretical trajectory, unbiased drift
  - Lethal recessive: a driven toward 0
"""

import numpy as np
import pytest

from chimpevo.genetics import (
    F_DEFICIT_LABEL,
    F_EQUILIBRIUM_LABEL,
    F_EXCESS_LABEL,
    F_STRONG_FIXATION_LABEL,
    MIGRANT_FREQ_A,
    compute_stats,
    create_initial_population,
    draw_genotypes,
    genotype_array,
    genotype_counts,
    hardy_weinberg_test,
    interpret_fixation_index,
    mean_fitness,
    migrate,
    next_theoretical_p,
    reproduce,
    select_survivors,
    step,
    theoretical_trajectory,
)
from chimpevo.model import run_replicates
from chimpevo.types import Genotype, Individual, SimulationParams


# ═══════════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════════


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def neutral():
    """No selection, mutation or migration."""
    return SimulationParams(
        population_size=200,
        initial_freq_a=0.5,
        mutation_rate=0.0,
        migration_rate=0.0,
    )


def make_population(n_AA: int, n_Aa: int, n_aa: int):
    return (
        [Individual(Genotype.AA) for _ in range(n_AA)]
        + [Individual(Genotype.Aa) for _ in range(n_Aa)]
        + [Individual(Genotype.aa) for _ in range(n_aa)]
    )


# ═══════════════════════════════════════════════════════════════════════
# POPULATION FACTORY
# ═══════════════════════════════════════════════════════════════════════


class TestDrawGenotypes:
    def test_shape_and_dtype(self, rng):
        g = draw_genotypes(50, 0.3, rng)
        assert g.shape == (50,)
        assert g.dtype == np.int8
        assert set(np.unique(g)).issubset({0, 1, 2})

    def test_p_one_all_A(self, rng):
        assert np.all(draw_genotypes(500, 1.0, rng) == 2)

    def test_p_zero_all_a(self, rng):
        assert np.all(draw_genotypes(500, 0.0, rng) == 0)

    def test_hardy_weinberg_proportions(self, rng):
        """Independent gametes give ≈ p², 2pq, q² genotype frequencies."""
        p = 0.3
        g = draw_genotypes(20000, p, rng)
        freqs = np.bincount(g, minlength=3) / len(g)
        np.testing.assert_allclose(
            freqs, [(1 - p) ** 2, 2 * p * (1 - p), p ** 2], atol=0.02,
        )


class TestCreateInitialPopulation:
    def test_size(self, rng):
        assert len(create_initial_population(123, 0.5, rng)) == 123

    def test_empty(self, rng):
        assert create_initial_population(0, 0.5, rng) == []

    def test_fixed_A(self, rng):
        pop = create_initial_population(1000, 1.0, rng)
        assert all(ind.genotype == Genotype.AA for ind in pop)

    def test_fixed_a(self, rng):
        pop = create_initial_population(1000, 0.0, rng)
        assert all(ind.genotype == Genotype.aa for ind in pop)

    def test_unique_ids(self, rng):
        pop = create_initial_population(500, 0.5, rng)
        assert len({ind.id for ind in pop}) == 500

    def test_frequency_near_p(self, rng):
        pop = create_initial_population(10000, 0.7, rng)
        assert compute_stats(pop, 0).freq_A == pytest.approx(0.7, abs=0.02)

    def test_reproducible(self):
        a = create_initial_population(100, 0.5, np.random.default_rng(7))
        b = create_initial_population(100, 0.5, np.random.default_rng(7))
        np.testing.assert_array_equal(genotype_array(a), genotype_array(b))


# ═══════════════════════════════════════════════════════════════════════
# SELECTION
# ═══════════════════════════════════════════════════════════════════════


class TestSelection:
    def test_full_fitness_everyone_survives(self, rng, neutral):
        pop = make_population(10, 10, 10)
        survivors = select_survivors(pop, neutral, rng)
        assert survivors == pop

    def test_zero_fitness_nobody_survives(self, rng):
        params = SimulationParams(fitness_AA=0.0, fitness_Aa=0.0, fitness_aa=0.0)
        assert select_survivors(make_population(10, 10, 10), params, rng) == []

    def test_lethal_recessive_removes_aa_only(self, rng):
        params = SimulationParams(fitness_aa=0.0)
        survivors = select_survivors(make_population(20, 20, 20), params, rng)
        assert len(survivors) == 40
        assert all(ind.genotype != Genotype.aa for ind in survivors)

    def test_fitness_above_one_always_survives(self, rng):
        params = SimulationParams(fitness_AA=1.5, fitness_Aa=0.0, fitness_aa=0.0)
        survivors = select_survivors(make_population(30, 5, 5), params, rng)
        assert len(survivors) == 30

    def test_partial_fitness_survival_rate(self, rng):
        params = SimulationParams(fitness_AA=0.3, fitness_Aa=0.3, fitness_aa=0.3)
        survivors = select_survivors(make_population(5000, 0, 5000), params, rng)
        assert len(survivors) / 10000 == pytest.approx(0.3, abs=0.02)

    def test_order_preserved(self, rng):
        pop = make_population(5, 5, 5)
        params = SimulationParams(fitness_Aa=0.0)
        survivors = select_survivors(pop, params, rng)
        assert survivors == pop[:5] + pop[10:]


# ═══════════════════════════════════════════════════════════════════════
# REPRODUCTION
# ═══════════════════════════════════════════════════════════════════════


class TestReproduction:
    def test_exact_target_size(self, rng, neutral):
        offspring = reproduce(make_population(3, 3, 3), neutral, rng)
        assert len(offspring) == neutral.population_size

    def test_new_individuals(self, rng, neutral):
        parents = make_population(5, 5, 5)
        offspring = reproduce(parents, neutral, rng)
        parent_ids = {ind.id for ind in parents}
        assert not any(ind.id in parent_ids for ind in offspring)

    def test_homozygous_AA_parents(self, rng, neutral):
        offspring = reproduce(make_population(10, 0, 0), neutral, rng)
        assert all(ind.genotype == Genotype.AA for ind in offspring)

    def test_homozygous_aa_parents(self, rng, neutral):
        offspring = reproduce(make_population(0, 0, 10), neutral, rng)
        assert all(ind.genotype == Genotype.aa for ind in offspring)

    def test_certain_mutation_flips_both_gametes(self, rng, neutral):
        params = neutral.replace(mutation_rate=1.0)
        offspring = reproduce(make_population(10, 0, 0), params, rng)
        assert all(ind.genotype == Genotype.aa for ind in offspring)

    def test_heterozygote_cross_mendelian_ratio(self, rng, neutral):
        """Aa × Aa → 1/4 AA : 1/2 Aa : 1/4 aa."""
        params = neutral.replace(population_size=20000)
        offspring = reproduce(make_population(0, 50, 0), params, rng)
        count_AA, count_Aa, count_aa = genotype_counts(offspring)
        assert count_AA / 20000 == pytest.approx(0.25, abs=0.02)
        assert count_Aa / 20000 == pytest.approx(0.50, abs=0.02)
        assert count_aa / 20000 == pytest.approx(0.25, abs=0.02)

    def test_mutation_rate_frequency(self, rng, neutral):
        """From all-AA parents, each gamete becomes a with P = u."""
        u = 0.1
        params = neutral.replace(population_size=20000, mutation_rate=u)
        offspring = reproduce(make_population(10, 0, 0), params, rng)
        freq_a = compute_stats(offspring, 1).freq_a
        assert freq_a == pytest.approx(u, abs=0.01)

    def test_selfing_allowed(self, rng, neutral):
        """A single heterozygous parent can breed with itself."""
        offspring = reproduce(make_population(0, 1, 0), neutral, rng)
        assert len(offspring) == neutral.population_size
        assert genotype_counts(offspring)[0] > 0


# ═══════════════════════════════════════════════════════════════════════
# MIGRATION
# ═══════════════════════════════════════════════════════════════════════


class TestMigration:
    def test_no_migration_is_identity(self, rng, neutral):
        pop = make_population(5, 5, 5)
        result = migrate(pop, neutral, rng)
        assert result == pop
        assert result is not pop

    def test_size_unchanged(self, rng):
        params = SimulationParams(population_size=100, migration_rate=0.5)
        pop = make_population(100, 0, 0)
        assert len(migrate(pop, params, rng)) == 100

    def test_replaced_slots_bounded(self, rng):
        params = SimulationParams(population_size=100, migration_rate=0.3)
        pop = make_population(100, 0, 0)
        result = migrate(pop, params, rng)
        n_replaced = sum(1 for a, b in zip(pop, result) if a is not b)
        assert 1 <= n_replaced <= 30

    def test_migrants_from_balanced_pool(self, rng):
        params = SimulationParams(population_size=1000, migration_rate=1.0)
        pop = make_population(1000, 0, 0)
        result = migrate(pop, params, rng)
        migrants = [b for a, b in zip(pop, result) if a is not b]
        # ~63% of slots are hit at least once when m = 1
        assert len(migrants) > 500
        assert compute_stats(migrants, 0).freq_A == pytest.approx(MIGRANT_FREQ_A, abs=0.05)

    def test_input_not_modified(self, rng):
        params = SimulationParams(population_size=50, migration_rate=0.5)
        pop = make_population(50, 0, 0)
        before = list(pop)
        migrate(pop, params, rng)
        assert pop == before

    def test_floor_of_migrant_count(self, rng):
        """N·m < 1 rounds down to zero migrants."""
        params = SimulationParams(population_size=10, migration_rate=0.09)
        pop = make_population(10, 0, 0)
        assert migrate(pop, params, rng) == pop


# ═══════════════════════════════════════════════════════════════════════
# FULL STEP
# ═══════════════════════════════════════════════════════════════════════


class TestStep:
    def test_returns_target_size(self, rng, neutral):
        pop = create_initial_population(50, 0.5, rng)
        assert len(step(pop, neutral, rng)) == 200

    def test_extinction_when_nobody_survives(self, rng):
        params = SimulationParams(fitness_AA=0.0, fitness_Aa=0.0, fitness_aa=0.0)
        pop = create_initial_population(100, 0.5, rng)
        assert step(pop, params, rng) == []

    def test_extinction_with_single_survivor(self, rng):
        params = SimulationParams(fitness_AA=1.0, fitness_Aa=0.0, fitness_aa=0.0)
        pop = make_population(1, 20, 20)
        assert step(pop, params, rng) == []

    def test_two_survivors_breed(self, rng):
        params = SimulationParams(fitness_AA=1.0, fitness_Aa=0.0, fitness_aa=0.0)
        pop = make_population(2, 20, 20)
        result = step(pop, params, rng)
        assert len(result) == params.population_size

    def test_empty_population_stays_empty(self, rng, neutral):
        assert step([], neutral, rng) == []

    def test_repeated_steps_keep_size(self, rng, neutral):
        pop = create_initial_population(200, 0.5, rng)
        for _ in range(20):
            pop = step(pop, neutral, rng)
            assert len(pop) == 200

    def test_fixed_population_stays_fixed_without_mutation(self, rng, neutral):
        pop = create_initial_population(200, 1.0, rng)
        for _ in range(10):
            pop = step(pop, neutral, rng)
        assert compute_stats(pop, 10).freq_A == 1.0


# ═══════════════════════════════════════════════════════════════════════
# STATISTICS
# ═══════════════════════════════════════════════════════════════════════


class TestComputeStats:
    def test_known_population(self):
        stats = compute_stats(make_population(2, 1, 1), 3, 0.6)
        assert stats.generation == 3
        assert (stats.count_AA, stats.count_Aa, stats.count_aa) == (2, 1, 1)
        assert stats.total_population == 4
        assert stats.freq_A == pytest.approx(0.625)
        assert stats.freq_a == pytest.approx(0.375)
        assert stats.heterozygosity_obs == pytest.approx(0.25)
        assert stats.heterozygosity_exp == pytest.approx(0.46875)
        assert stats.fixation_index == pytest.approx(1 - 0.25 / 0.46875)
        assert stats.expected_freq_A == 0.6

    def test_empty_population(self):
        stats = compute_stats([], 7)
        assert stats.total_population == 0
        assert stats.freq_A == 0.0
        assert stats.freq_a == 1.0
        assert stats.heterozygosity_obs == 0.0
        assert stats.heterozygosity_exp == 0.0
        assert stats.fixation_index == 0.0

    def test_expected_defaults_to_observed(self):
        stats = compute_stats(make_population(3, 0, 1), 0, None)
        assert stats.expected_freq_A == stats.freq_A

    def test_monomorphic_has_zero_F(self):
        stats = compute_stats(make_population(10, 0, 0), 0)
        assert stats.heterozygosity_exp == 0.0
        assert stats.fixation_index == 0.0

    def test_all_heterozygotes_negative_F(self):
        stats = compute_stats(make_population(0, 10, 0), 0)
        assert stats.freq_A == 0.5
        assert stats.heterozygosity_obs == 1.0
        assert stats.fixation_index == pytest.approx(-1.0)

    def test_invariants_over_random_populations(self):
        for seed in range(25):
            rng = np.random.default_rng(seed)
            n = int(rng.integers(1, 300))
            pop = create_initial_population(n, float(rng.random()), rng)
            s = compute_stats(pop, seed)
            assert s.count_AA + s.count_Aa + s.count_aa == s.total_population == n
            assert s.freq_A + s.freq_a == pytest.approx(1.0)
            assert 0.0 <= s.freq_A <= 1.0
            assert 0.0 <= s.freq_a <= 1.0
            assert s.heterozygosity_exp == 2 * s.freq_A * s.freq_a
            if s.heterozygosity_exp == 0:
                assert s.fixation_index == 0

    def test_as_dict(self):
        d = compute_stats(make_population(1, 1, 1), 2).as_dict()
        assert d['generation'] == 2
        assert d['total_population'] == 3

    def test_genotype_counts(self):
        assert genotype_counts(make_population(4, 5, 6)) == (4, 5, 6)
        assert genotype_counts([]) == (0, 0, 0)


# ═══════════════════════════════════════════════════════════════════════
# DETERMINISTIC RECURSION
# ═══════════════════════════════════════════════════════════════════════


class TestNextTheoreticalP:
    def test_pure(self):
        params = SimulationParams(fitness_aa=0.4, mutation_rate=0.01, migration_rate=0.05)
        assert next_theoretical_p(0.37, params) == next_theoretical_p(0.37, params)

    @pytest.mark.parametrize("p", [0.0, 0.25, 0.5, 0.75, 1.0])
    def test_neutral_is_flat(self, p, neutral):
        assert next_theoretical_p(p, neutral) == p

    def test_neutral_is_flat_approx(self, neutral):
        for p in np.linspace(0, 1, 37):
            assert next_theoretical_p(float(p), neutral) == pytest.approx(p, abs=1e-12)

    def test_boundaries_fixed_under_selection(self):
        params = SimulationParams(
            fitness_AA=0.2, fitness_Aa=0.9, fitness_aa=0.5,
            mutation_rate=0.0, migration_rate=0.0,
        )
        assert next_theoretical_p(0.0, params) == 0.0
        assert next_theoretical_p(1.0, params) == 1.0

    def test_zero_mean_fitness_collapses_to_zero(self):
        params = SimulationParams(fitness_AA=0.0, fitness_Aa=0.0, fitness_aa=0.0,
                                  mutation_rate=0.1, migration_rate=0.5)
        assert next_theoretical_p(0.5, params) == 0.0

    def test_selection_formula(self):
        params = SimulationParams(fitness_AA=1.0, fitness_Aa=0.8, fitness_aa=0.2,
                                  mutation_rate=0.0, migration_rate=0.0)
        p, q = 0.4, 0.6
        w_bar = p * p * 1.0 + 2 * p * q * 0.8 + q * q * 0.2
        expected = (p * p * 1.0 + p * q * 0.8) / w_bar
        assert next_theoretical_p(p, params) == pytest.approx(expected)
        assert mean_fitness(p, params) == pytest.approx(w_bar)

    def test_mutation_pulls_toward_half(self):
        params = SimulationParams(mutation_rate=0.1, migration_rate=0.0)
        assert next_theoretical_p(1.0, params) == pytest.approx(0.9)
        assert next_theoretical_p(0.0, params) == pytest.approx(0.1)

    def test_migration_toward_source(self):
        params = SimulationParams(mutation_rate=0.0, migration_rate=0.2)
        assert next_theoretical_p(1.0, params) == pytest.approx(0.9)
        assert next_theoretical_p(0.0, params) == pytest.approx(0.1)

    def test_bounded(self):
        rng = np.random.default_rng(3)
        for _ in range(500):
            params = SimulationParams(
                fitness_AA=float(rng.random()),
                fitness_Aa=float(rng.random()),
                fitness_aa=float(rng.random()),
                mutation_rate=float(rng.random()),
                migration_rate=float(rng.random()),
            )
            p = next_theoretical_p(float(rng.random()), params)
            assert -1e-12 <= p <= 1.0 + 1e-12


class TestTheoreticalTrajectory:
    def test_length_and_start(self, neutral):
        traj = theoretical_trajectory(0.3, neutral, 10)
        assert traj.shape == (11,)
        assert traj[0] == 0.3

    def test_matches_iteration(self):
        params = SimulationParams(fitness_aa=0.5, mutation_rate=0.01)
        traj = theoretical_trajectory(0.2, params, 5)
        p = 0.2
        for t in range(1, 6):
            p = next_theoretical_p(p, params)
            assert traj[t] == p

    def test_lethal_recessive_approaches_one(self):
        params = SimulationParams(fitness_aa=0.0, mutation_rate=0.0)
        traj = theoretical_trajectory(0.5, params, 200)
        assert np.all(np.diff(traj) > 0)
        assert traj[-1] > 0.99


# ═══════════════════════════════════════════════════════════════════════
# SCENARIOS
# ═══════════════════════════════════════════════════════════════════════


class TestScenarios:
    def test_neutral_drift_unbiased(self, neutral):
        """Mean observed freq_A over replicates stays near p0."""
        result = run_replicates(neutral, n_generations=50, n_replicates=40, seed=11)
        assert result.n_extinct == 0
        np.testing.assert_array_equal(result.theoretical, 0.5)
        assert result.mean_freq_A[-1] == pytest.approx(0.5, abs=0.1)

    def test_drift_increases_variance(self, neutral):
        result = run_replicates(neutral, n_generations=60, n_replicates=30, seed=5)
        assert result.std_freq_A[-1] > result.std_freq_A[0]

    def test_lethal_recessive_purged(self, rng):
        params = SimulationParams(population_size=200, fitness_aa=0.0, mutation_rate=0.0)
        pop = create_initial_population(200, 0.5, rng)
        start = compute_stats(pop, 0).freq_a
        for _ in range(100):
            pop = step(pop, params, rng)
        end = compute_stats(pop, 100)
        assert end.freq_a < start
        assert end.freq_a < 0.15


# ═══════════════════════════════════════════════════════════════════════
# HARDY-WEINBERG TEST
# ═══════════════════════════════════════════════════════════════════════


class TestHardyWeinberg:
    def test_perfect_equilibrium(self):
        result = hardy_weinberg_test(make_population(25, 50, 25))
        assert result.n == 100
        np.testing.assert_allclose(result.observed, [0.25, 0.5, 0.25])
        np.testing.assert_allclose(result.expected, [0.25, 0.5, 0.25])
        assert result.chi2 == pytest.approx(0.0)
        assert result.p_value == pytest.approx(1.0)

    def test_heterozygote_excess_rejected(self):
        result = hardy_weinberg_test(make_population(0, 100, 0))
        assert result.chi2 == pytest.approx(100.0)
        assert result.p_value < 1e-10

    def test_monomorphic(self):
        result = hardy_weinberg_test(make_population(0, 0, 40))
        assert result.chi2 == 0.0
        assert result.p_value == pytest.approx(1.0)

    def test_exact_expected_counts(self):
        """Expectations are not rounded to whole individuals."""
        result = hardy_weinberg_test(make_population(1, 1, 1))
        np.testing.assert_allclose(result.expected * result.n, [0.75, 1.5, 0.75])
        assert result.chi2 == pytest.approx(1 / 3)

    def test_too_small(self):
        result = hardy_weinberg_test(make_population(1, 0, 0))
        assert result.n == 1
        assert result.chi2 == 0.0
        assert result.p_value == 1.0


class TestInterpretFixationIndex:
    @pytest.mark.parametrize("F, label", [
        (0.0, F_EQUILIBRIUM_LABEL),
        (0.1, F_EQUILIBRIUM_LABEL),
        (-0.1, F_EQUILIBRIUM_LABEL),
        (0.2, F_DEFICIT_LABEL),
        (0.5, F_DEFICIT_LABEL),
        (0.51, F_STRONG_FIXATION_LABEL),
        (1.0, F_STRONG_FIXATION_LABEL),
        (-0.2, F_EXCESS_LABEL),
        (-1.0, F_EXCESS_LABEL),
    ])
    def test_bands(self, F, label):
        assert interpret_fixation_index(F) == label

    def test_all_heterozygotes_is_excess(self):
        stats = compute_stats(make_population(0, 10, 0), 0)
        assert interpret_fixation_index(stats.fixation_index) == F_EXCESS_LABEL
