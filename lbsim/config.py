"""
Run parameters and the JSON config layer.
"""
from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from .balancers import Strategy
from .errors import ConfigError
from .stats import ConfidenceIntervalRule, FixedSampleCountRule, StoppingRule

RUN_LENGTH_RULES = ("confidence_interval", "fixed_samples")
INTEGER_FIELDS = ("num_servers", "queue_capacity", "fixed_samples")
REAL_FIELDS = (
    "arrival_rate",
    "service_rate",
    "refresh_period",
    "max_time",
    "confidence_level",
    "accuracy",
    "progress_interval",
)


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_finite_real(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


@dataclass
class RunParameters:
    strategy: Strategy = Strategy.ROUND_ROBIN
    num_servers: int = 5
    arrival_rate: float = 3.5
    service_rate: float = 1.0
    queue_capacity: int = 200
    refresh_period: float = 10.0
    max_time: float = 60.0
    confidence_level: float = 0.95
    accuracy: float = 0.01
    run_length_rule: str = "confidence_interval"
    fixed_samples: int = 1000
    seed: Optional[int] = 42
    progress_interval: Optional[float] = None

    def validate(self) -> None:
        try:
            self.strategy = Strategy(self.strategy)
        except ValueError:
            choices = ", ".join(s.value for s in Strategy)
            raise ConfigError(f"Unknown strategy {self.strategy!r}; expected one of: {choices}") from None
        for name in INTEGER_FIELDS:
            value = getattr(self, name)
            if not _is_integer(value):
                raise ConfigError(f"{name} must be an integer, got {value!r}")
        if self.seed is not None and not _is_integer(self.seed):
            raise ConfigError(f"seed must be an integer or null, got {self.seed!r}")
        for name in REAL_FIELDS:
            value = getattr(self, name)
            if value is None and name == "progress_interval":
                continue
            if not _is_finite_real(value):
                raise ConfigError(f"{name} must be a finite number, got {value!r}")
        if self.num_servers < 1:
            raise ConfigError("num_servers must be >= 1")
        if self.arrival_rate <= 0:
            raise ConfigError("arrival_rate must be > 0")
        if self.service_rate <= 0:
            raise ConfigError("service_rate must be > 0")
        if self.queue_capacity < 1:
            raise ConfigError("queue_capacity must be >= 1")
        if self.refresh_period <= 0:
            raise ConfigError("refresh_period must be > 0")
        if self.max_time <= 0:
            raise ConfigError("max_time must be > 0")
        if not 0.0 < self.confidence_level < 1.0:
            raise ConfigError("confidence_level must be in (0, 1)")
        if self.accuracy <= 0:
            raise ConfigError("accuracy must be > 0")
        if self.run_length_rule not in RUN_LENGTH_RULES:
            raise ConfigError(f"Unknown run_length rule {self.run_length_rule!r}")
        if self.run_length_rule == "fixed_samples" and self.fixed_samples < 1:
            raise ConfigError("run_length samples must be >= 1")
        if self.progress_interval is not None and self.progress_interval <= 0:
            raise ConfigError("progress_interval must be > 0")

    def stopping_rule(self) -> StoppingRule:
        if self.run_length_rule == "fixed_samples":
            return FixedSampleCountRule(self.fixed_samples)
        return ConfidenceIntervalRule(self.confidence_level, self.accuracy)

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["strategy"] = Strategy(self.strategy).value
        return out


# -----------------------------
# JSON config
# -----------------------------
DEFAULT_CONFIG = {
    "simulation": {
        "seed": 42,
        "max_time": 60.0,
        "progress_interval": None,
    },
    "traffic": {
        "arrival_rate": 3.5,
        "service_rate": 1.0,
    },
    "servers": {
        "count": 5,
        "queue_capacity": 200,
    },
    "load_balancer": {
        "strategy": "round_robin",
        "refresh_period": 10.0,
    },
    "run_length": {
        "rule": "confidence_interval",
        "confidence_level": 0.95,
        "accuracy": 0.01,
        "samples": 1000,
    },
    "reporting": {
        "output_dir": "reports",
        "writers": ["json", "markdown"],
    },
}


def merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config(path: Optional[str]) -> Dict[str, Any]:
    cfg = json.loads(json.dumps(DEFAULT_CONFIG))  # deep copy
    if path:
        with open(path, "r") as f:
            user_cfg = json.load(f)
        cfg = merge(cfg, user_cfg)
    return cfg


def parameters_from_config(config: Dict[str, Any]) -> RunParameters:
    sim_cfg = config.get("simulation", {})
    traffic_cfg = config.get("traffic", {})
    servers_cfg = config.get("servers", {})
    lb_cfg = config.get("load_balancer", {})
    rl_cfg = config.get("run_length", {})

    # counts and seed are passed through as-is; validate() rejects non-integers
    seed = sim_cfg.get("seed", 42)
    progress = sim_cfg.get("progress_interval")
    try:
        params = RunParameters(
            strategy=lb_cfg.get("strategy", "round_robin"),
            num_servers=servers_cfg.get("count", 5),
            arrival_rate=float(traffic_cfg.get("arrival_rate", 3.5)),
            service_rate=float(traffic_cfg.get("service_rate", 1.0)),
            queue_capacity=servers_cfg.get("queue_capacity", 200),
            refresh_period=float(lb_cfg.get("refresh_period", 10.0)),
            max_time=float(sim_cfg.get("max_time", 60.0)),
            confidence_level=float(rl_cfg.get("confidence_level", 0.95)),
            accuracy=float(rl_cfg.get("accuracy", 0.01)),
            run_length_rule=str(rl_cfg.get("rule", "confidence_interval")),
            fixed_samples=rl_cfg.get("samples", 1000),
            seed=seed,
            progress_interval=None if progress is None else float(progress),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Malformed config value: {exc}") from exc
    params.validate()
    return params
