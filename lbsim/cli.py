#!/usr/bin/env python3
"""
lbsim command line

Runs one load-balancing experiment and writes its report:
- Strategy picked by --strategy, by the config file, or by the interactive menu
- Run length controlled by the confidence-interval rule (or a fixed sample count)
- JSON and Markdown reports with per-server utilization and response times

Note:
- All times are virtual time units; no wall-clock time enters the model
"""
from __future__ import annotations

import argparse
import json
import os
from typing import Any, Callable, Dict, List, Optional

from .balancers import Strategy
from .config import load_config, parameters_from_config
from .errors import ConfigError, QueueOverflowError
from .simulation import Simulation

STRATEGY_MENU: List[Strategy] = [
    Strategy.RANDOM,
    Strategy.ROUND_ROBIN,
    Strategy.SHORTEST_QUEUE,
    Strategy.SHORTEST_QUEUE_STALE,
    Strategy.IMPROVED,
]


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


# -----------------------------
# Strategy menu
# -----------------------------
def choose_strategy_dialog(
    read: Optional[Callable[[str], str]] = None,
    write: Optional[Callable[[str], None]] = None,
) -> Strategy:
    """Ask for a strategy number until a valid one is entered."""
    read = read if read is not None else input
    write = write if write is not None else print
    write("Choose workload balancing strategy for the system. Press:")
    for number, strategy in enumerate(STRATEGY_MENU, start=1):
        write(f"  {number} - for {strategy.label} balancing strategy")
    while True:
        answer = read("Your choice: ").strip()
        try:
            choice = int(answer)
        except ValueError:
            choice = 0
        if 1 <= choice <= len(STRATEGY_MENU):
            return STRATEGY_MENU[choice - 1]
        write("ERROR! Your choice is not appropriate. Try again please.")


# -----------------------------
# Reports
# -----------------------------
def dict_to_table(d: Dict[str, Any]) -> str:
    keys_str = [str(k) for k in d.keys()]
    vals = [d[k] for k in d.keys()]

    def fmt(v: Any) -> str:
        if isinstance(v, float):
            return f"{v:.6f}"
        if v is None:
            return "n/a"
        return str(v)

    return (
        "| " + " | ".join(keys_str) + " |\n" +
        "| " + " | ".join(["---"] * len(keys_str)) + " |\n" +
        "| " + " | ".join(fmt(v) for v in vals) + " |\n"
    )


def report_markdown(report: Dict[str, Any]) -> str:
    md = []
    md.append("# lbsim Simulation Report\n")
    md.append("## Run Summary\n")
    md.append(dict_to_table({
        "strategy": report.get("strategy", "n/a"),
        "seed": report.get("seed", "n/a"),
        "stop_reason": report.get("stop_reason", "n/a"),
        "stopping_rule": report.get("stopping_rule", "n/a"),
        "sim_time": report.get("sim_time", "n/a"),
        "arrivals": report.get("arrivals", "n/a"),
        "samples": report.get("samples", "n/a"),
        "events_processed": report.get("events_processed", "n/a"),
        "wall_runtime_seconds": report.get("wall_runtime_seconds", "n/a"),
    }))
    md.append("\n## Response Time\n")
    lo, hi = report.get("confidence_interval", [None, None])
    md.append(dict_to_table({
        "mean": report.get("mean_response_time"),
        "half_width": report.get("half_width"),
        "confidence_level": report.get("confidence_level"),
        "ci_low": lo,
        "ci_high": hi,
        "relative_precision": report.get("relative_precision"),
        "server_mean": report.get("server_mean_response_time"),
    }))
    servers = report.get("servers", [])
    if servers:
        md.append("\n## Servers\n")
        keys = list(servers[0].keys())
        md.append("| " + " | ".join(keys) + " |\n")
        md.append("| " + " | ".join(["---"] * len(keys)) + " |\n")
        for s in servers:
            cells = [f"{s[k]:.6f}" if isinstance(s[k], float) else str(s[k]) for k in keys]
            md.append("| " + " | ".join(cells) + " |\n")
    return "".join(md)


def write_reports(report: Dict[str, Any], config: Dict[str, Any]) -> List[str]:
    rep_cfg = config.get("reporting", {})
    writers = rep_cfg.get("writers", ["json", "markdown"])
    outdir = rep_cfg.get("output_dir", "reports")
    ensure_dir(outdir)
    written = []
    # JSON
    if "json" in writers:
        path = os.path.join(outdir, "report.json")
        with open(path, "w") as f:
            json.dump(report, f, indent=2)
        print(f"Wrote JSON report: {path}")
        written.append(path)
    # Markdown
    if "markdown" in writers:
        path = os.path.join(outdir, "report.md")
        with open(path, "w") as f:
            f.write(report_markdown(report))
        print(f"Wrote Markdown report: {path}")
        written.append(path)
    return written


# -----------------------------
# Entry point
# -----------------------------
def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="lbsim load balancing simulation")
    parser.add_argument("--config", type=str, help="Path to JSON config", default=None)
    parser.add_argument("--strategy", type=str, choices=[s.value for s in Strategy], help="Override load balancing strategy")
    parser.add_argument("--interactive", action="store_true", help="Pick the strategy from a menu")
    parser.add_argument("--seed", type=int, help="Override RNG seed")
    parser.add_argument("--max-time", type=float, help="Override maximum virtual time")
    parser.add_argument("--output-dir", type=str, help="Override report output dir")
    args = parser.parse_args(argv)

    cfg = load_config(args.config)
    if args.interactive:
        cfg.setdefault("load_balancer", {})["strategy"] = choose_strategy_dialog().value
    elif args.strategy:
        cfg.setdefault("load_balancer", {})["strategy"] = args.strategy
    if args.seed is not None:
        cfg.setdefault("simulation", {})["seed"] = int(args.seed)
    if args.max_time is not None:
        cfg.setdefault("simulation", {})["max_time"] = float(args.max_time)
    if args.output_dir:
        cfg.setdefault("reporting", {})["output_dir"] = args.output_dir

    try:
        params = parameters_from_config(cfg)
    except ConfigError as exc:
        print(f"Invalid configuration: {exc}")
        return 2

    print("\n*** BEGIN SIMULATION ***")
    sim = Simulation(params)
    try:
        result = sim.run()
    except QueueOverflowError as exc:
        print("!!! ERROR !!!")
        print(str(exc))
        return 1
    print("*** END SIMULATION ***\n")

    report = result.to_dict()
    write_reports(report, cfg)

    # Also print a concise summary
    print(json.dumps(report, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
