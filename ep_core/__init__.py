"""
Expectation Propagation Core Package.

This package contains the scheduling and execution core for message-passing
inference on factor graphs, including:

- Graph model (FactorGraph, Node, Interface) and message payloads
- Schedule construction by memoised depth-first search, interleaved per site
- Rule resolution and static message type inference
- The ExpectationPropagation algorithm with its two-phase execution
- Convergence monitors and a YAML model compiler

Typical use:

    model = compile_from_file("scripts/probit.yaml")
    algo = model.build(callback=SiteChangeMonitor([s for s, _ in model.sites]))
    algo.execute()
"""

__version__ = "0.1.0"

from .enums import AlgorithmState, RuleKind
from .errors import (
    ConfigurationError,
    ExecutionError,
    InferenceError,
    SchedulingError,
    TypeInferenceError,
)
from .config import AlgorithmConfig
from .messages import (
    Absent,
    Delta,
    Distribution,
    Gaussian,
    GaussianMeanVariance,
    GaussianWeightedMeanPrecision,
    Message,
)
from .graph import FactorGraph, Interface, Node
from .rules import Rule, RuleCatalog, default_catalog
from .library import make_node
from .schedule import Schedule, ScheduleEntry, build_ep_schedule, generate_schedule_by_dfs
from .inference import check_type_consistency, infer_types
from .algorithm import ConvergenceCheck, ExpectationPropagation
from .metrics import IterationCounter, SiteChangeMonitor, has_converged, iterations_run
from .compiler import CompiledModel, compile_from_dict, compile_from_file, compile_from_yaml
