import json

import pytest

from lbsim.balancers import Strategy
from lbsim.cli import choose_strategy_dialog, main, report_markdown
from lbsim.config import DEFAULT_CONFIG, load_config, parameters_from_config
from lbsim.errors import ConfigError
from lbsim.stats import FixedSampleCountRule


def write_config(tmp_path, cfg):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(cfg))
    return str(path)


def test_load_config_defaults_are_a_copy():
    cfg = load_config(None)
    assert cfg == DEFAULT_CONFIG
    cfg["traffic"]["arrival_rate"] = 99.0
    assert DEFAULT_CONFIG["traffic"]["arrival_rate"] == 3.5


def test_load_config_merges_nested_sections(tmp_path):
    path = write_config(tmp_path, {"traffic": {"arrival_rate": 2.0}, "load_balancer": {"strategy": "improved"}})
    cfg = load_config(path)
    assert cfg["traffic"] == {"arrival_rate": 2.0, "service_rate": 1.0}
    params = parameters_from_config(cfg)
    assert params.strategy is Strategy.IMPROVED
    assert params.arrival_rate == 2.0
    assert params.num_servers == 5
    assert params.refresh_period == 10.0


def test_fixed_samples_rule_from_config():
    cfg = load_config(None)
    cfg["run_length"].update({"rule": "fixed_samples", "samples": 25})
    rule = parameters_from_config(cfg).stopping_rule()
    assert isinstance(rule, FixedSampleCountRule)
    assert rule.samples == 25


@pytest.mark.parametrize("section,key,value", [
    ("load_balancer", "strategy", "fastest"),
    ("servers", "count", 0),
    ("traffic", "service_rate", 0.0),
    ("run_length", "confidence_level", 1.5),
    ("run_length", "rule", "forever"),
    ("servers", "queue_capacity", "lots"),
    ("simulation", "progress_interval", -1.0),
    ("simulation", "max_time", float("nan")),
    ("simulation", "max_time", float("inf")),
    ("run_length", "accuracy", float("nan")),
    ("traffic", "arrival_rate", float("inf")),
    ("servers", "count", 2.5),
    ("servers", "count", True),
    ("run_length", "samples", 2.5),
    ("simulation", "seed", 1.5),
])
def test_invalid_config_rejected(section, key, value):
    cfg = load_config(None)
    cfg[section][key] = value
    with pytest.raises(ConfigError):
        parameters_from_config(cfg)


def test_nan_literal_in_config_file_rejected(tmp_path):
    # json accepts the bare NaN token
    path = tmp_path / "config.json"
    path.write_text('{"simulation": {"max_time": NaN}}')
    cfg = load_config(str(path))
    with pytest.raises(ConfigError, match="max_time"):
        parameters_from_config(cfg)


def test_dialog_reprompts_until_valid():
    answers = iter(["9", "abc", "0", "4"])
    lines = []
    choice = choose_strategy_dialog(read=lambda prompt: next(answers), write=lines.append)
    assert choice is Strategy.SHORTEST_QUEUE_STALE
    assert sum("not appropriate" in line for line in lines) == 3
    assert "  3 - for Up-to-Date Shortest Queue balancing strategy" in lines


def test_main_writes_reports(tmp_path, capsys):
    outdir = tmp_path / "out"
    code = main(["--strategy", "improved", "--max-time", "5", "--seed", "3", "--output-dir", str(outdir)])
    assert code == 0
    report = json.loads((outdir / "report.json").read_text())
    assert report["strategy"] == "improved"
    assert report["seed"] == 3
    md = (outdir / "report.md").read_text()
    assert "## Servers" in md
    assert "Wrote JSON report" in capsys.readouterr().out


def test_main_interactive(tmp_path, monkeypatch):
    monkeypatch.setattr("builtins.input", lambda prompt="": "2")
    outdir = tmp_path / "out"
    assert main(["--interactive", "--max-time", "2", "--output-dir", str(outdir)]) == 0
    assert json.loads((outdir / "report.json").read_text())["strategy"] == "round_robin"


def test_main_reports_overflow(tmp_path, capsys):
    path = write_config(tmp_path, {
        "traffic": {"arrival_rate": 10.0, "service_rate": 0.001},
        "servers": {"count": 1, "queue_capacity": 2},
        "reporting": {"output_dir": str(tmp_path / "out")},
    })
    assert main(["--config", path]) == 1
    out = capsys.readouterr().out
    assert "Queue overflow on server 0" in out
    assert not (tmp_path / "out").exists()


def test_main_rejects_bad_config(tmp_path, capsys):
    path = write_config(tmp_path, {"traffic": {"arrival_rate": -1.0}})
    assert main(["--config", path]) == 2
    assert "Invalid configuration" in capsys.readouterr().out


def test_report_markdown_handles_missing_interval():
    md = report_markdown({"strategy": "random", "confidence_interval": [None, None], "servers": []})
    assert "# lbsim Simulation Report" in md
    assert "n/a" in md
