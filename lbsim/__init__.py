"""
lbsim package

Discrete-event simulation of workload distribution across N single-queue
servers, comparing five load balancing strategies by mean response time.
The kernel runs on SimPy virtual time (no wall-clock time in the model).
"""

from .balancers import Strategy, create_balancer
from .config import RunParameters, load_config, parameters_from_config
from .errors import ConfigError, QueueOverflowError, SimulationError
from .simulation import Simulation, SimulationResult, run_simulation

__all__ = [
    "ConfigError",
    "QueueOverflowError",
    "RunParameters",
    "Simulation",
    "SimulationError",
    "SimulationResult",
    "Strategy",
    "create_balancer",
    "load_config",
    "parameters_from_config",
    "run_simulation",
]
__version__ = "0.1.0"
