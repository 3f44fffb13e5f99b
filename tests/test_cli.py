"""Tests for chimpevo.cli — argument parsing and end-to-end runs."""

import argparse
from pathlib import Path

import pytest

from chimpevo.cli import HEADER, build_parser, main, parse_event, resolve_config

CONFIG_DIR = Path(__file__).parent.parent / "configs"


class TestParseEvent:
    def test_valid(self):
        assert parse_event("20:bottleneck") == {'generation': 20, 'kind': 'bottleneck'}

    @pytest.mark.parametrize("text", ["bottleneck", "20:", "x:sweep"])
    def test_invalid(self, text):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_event(text)


class TestResolveConfig:
    def test_flags_override_file(self):
        args = build_parser().parse_args([
            str(CONFIG_DIR / "default.yaml"),
            "--generations", "7", "--seed", "3", "--population-size", "30",
        ])
        config = resolve_config(args)
        assert config.simulation.n_generations == 7
        assert config.simulation.seed == 3
        assert config.params.population_size == 30

    def test_events_appended(self):
        args = build_parser().parse_args(["--event", "2:founder", "--event", "4:sweep"])
        config = resolve_config(args)
        assert config.event_schedule() == {2: ['founder'], 4: ['sweep']}

    def test_unknown_event_rejected(self):
        args = build_parser().parse_args(["--event", "2:meteor"])
        with pytest.raises(ValueError, match="meteor"):
            resolve_config(args)


class TestMain:
    def test_single_run(self, capsys):
        assert main(["--generations", "5", "--seed", "1"]) == 0
        out = capsys.readouterr().out
        assert HEADER in out
        assert "Simulation initialized." in out
        assert "Final: N=100" in out

    def test_with_event_and_summary(self, capsys, monkeypatch):
        monkeypatch.delenv('GEMINI_API_KEY', raising=False)
        code = main([
            str(CONFIG_DIR / "default.yaml"),
            "--generations", "6", "--event", "3:founder", "--summary",
        ])
        assert code == 0
        out = capsys.readouterr().out
        assert "EVENT: Founder effect (N=15)." in out
        assert "Final: N=15" in out
        assert "Narrative summary" in out
        assert "not configured" in out

    def test_extinction_reported(self, tmp_path, capsys):
        path = tmp_path / "dead.yaml"
        path.write_text("params:\n  fitness_AA: 0\n  fitness_Aa: 0\n  fitness_aa: 0\n")
        assert main([str(path), "--generations", "10"]) == 0
        out = capsys.readouterr().out
        assert "Population extinct!" in out
        assert "went extinct at generation 1" in out

    def test_replicates(self, capsys):
        assert main(["--generations", "4", "--replicates", "3"]) == 0
        out = capsys.readouterr().out
        assert "mean p(A)" in out
        assert "0/3 replicates went extinct." in out

    def test_missing_config(self, tmp_path, capsys):
        assert main([str(tmp_path / "missing.yaml")]) == 2
        assert "error:" in capsys.readouterr().err

    def test_hardy_weinberg_report(self, capsys):
        assert main(["--generations", "5", "--seed", "1"]) == 0
        out = capsys.readouterr().out
        assert "Hardy-Weinberg (AA / Aa / aa):" in out
        assert "chi2=" in out
        assert "df=1, p=" in out
        assert any(label in out for label in (
            "Equilibrium", "Heterozygote deficit",
            "Heterozygote excess", "Strong fixation",
        ))

    def test_no_hardy_weinberg_after_extinction(self, tmp_path, capsys):
        path = tmp_path / "dead.yaml"
        path.write_text("params:\n  fitness_AA: 0\n  fitness_Aa: 0\n  fitness_aa: 0\n")
        main([str(path), "--generations", "3"])
        assert "Hardy-Weinberg" not in capsys.readouterr().out

    def test_missing_scenario(self, tmp_path, capsys):
        code = main(["--scenario", str(tmp_path / "lethal_recesive.yaml")])
        assert code == 2
        assert "lethal_recesive.yaml" in capsys.readouterr().err

    def test_quoted_number(self, tmp_path, capsys):
        path = tmp_path / "quoted.yaml"
        path.write_text("simulation:\n  seed: \"7\"\n")
        assert main([str(path)]) == 2
        assert "simulation.seed must be an integer" in capsys.readouterr().err

    def test_invalid_value(self, capsys):
        assert main(["--population-size", "0"]) == 2
        assert "population_size" in capsys.readouterr().err

    def test_bad_event_syntax_exits(self):
        with pytest.raises(SystemExit):
            main(["--event", "sweep"])
