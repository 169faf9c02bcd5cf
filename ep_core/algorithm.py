"""
Expectation propagation algorithm: construction and execution.

Construction is a one-time compilation phase:

1. Build the iterative schedule (cavity computation and update of every
   site, in site order) and the post-convergence schedule (everything else
   needed for the final outputs).
2. Select the rule kind of every entry (expectation rule for sites,
   sum-product otherwise) and infer the message type of every entry.
3. Verify single production and dependency ordering.

Execution is repeatable:

1. Reset every site message to a vague value of its recognition type.
2. Run the iterative schedule up to `n_iterations` times, asking the
   convergence callback after every full pass whether to stop.
3. Run the post-convergence schedule once.

Thread-safety: messages are mutated in place on the graph's interfaces
without synchronisation. Algorithms over disjoint graphs can run
concurrently; algorithms sharing a graph must not.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Protocol, Sequence, Tuple

from .config import AlgorithmConfig
from .enums import AlgorithmState, RuleKind
from .errors import ConfigurationError, ExecutionError, TypeInferenceError
from .graph import FactorGraph, Interface
from .inference import infer_types
from .messages import Distribution, Message, matches, type_name
from .rules import RuleCatalog, default_catalog
from .schedule import Schedule, ScheduleEntry, build_ep_schedule, check_schedule, to_schedule

logger = logging.getLogger(__name__)


class ConvergenceCheck(Protocol):
    """Caller-supplied convergence test, consulted after every full iterative pass."""

    def check_converged(self) -> bool:
        ...


def never_converged() -> bool:
    """Default callback: always run the full iteration bound."""
    return False


class ExpectationPropagation:
    """
    Compiled expectation propagation algorithm over a factor graph.

    Attributes:
        graph: Graph the schedules were built over
        iterative_schedule: Entries run once per iteration
        post_convergence_schedule: Entries run once after the iterations
        sites: Site interfaces, in update order
        recognition_types: Recognition distribution type per site
        callback: Convergence callback as supplied by the caller
        config: Effective configuration
        state: Current `AlgorithmState`
        stats: Execution statistics (executions, iterations_run,
            total_iterations, converged)
    """

    def __init__(
        self,
        sites: Sequence[Tuple[Interface, type]],
        outbound_interfaces: Interface | Iterable[Interface] = (),
        *,
        graph: FactorGraph,
        n_iterations: int | None = None,
        callback: Callable[[], bool] | ConvergenceCheck | None = None,
        message_types: Mapping[Interface, type] | None = None,
        catalog: RuleCatalog | None = None,
        config: AlgorithmConfig | None = None,
    ):
        """
        Build and type-check an expectation propagation algorithm.

        Args:
            sites: (site interface, recognition distribution type) pairs
            outbound_interfaces: Final output interface(s) computed once after
                convergence
            graph: Factor graph holding every site and output interface
            n_iterations: Maximum number of iterations (overrides `config`)
            callback: Zero-argument predicate or object with
                `check_converged()`; returning True stops iterating
            message_types: Fixed outbound types per interface
            catalog: Rule catalog; defaults to the built-in rules
            config: Algorithm configuration

        Raises:
            ConfigurationError: On missing sites or invalid arguments
            SchedulingError: If a dependency cannot be scheduled
            TypeInferenceError: If an entry has no unique matching rule
        """
        if not isinstance(graph, FactorGraph):
            raise ConfigurationError("graph must be a FactorGraph")
        self.graph = graph
        self.config = config or AlgorithmConfig()
        if n_iterations is not None:
            self.config = replace(self.config, n_iterations=n_iterations)
        self.catalog = catalog if catalog is not None else default_catalog()
        self.callback = callback if callback is not None else never_converged
        self._check_converged = self._converged_predicate(self.callback)

        self.sites: List[Interface] = []
        self.recognition_types: Dict[Interface, type] = {}
        for site in sites:
            interface, recognition_type = self._parse_site(site)
            if interface in self.recognition_types:
                raise ConfigurationError(f"Site {interface.label} is given twice")
            self.sites.append(interface)
            self.recognition_types[interface] = recognition_type
        if not self.sites:
            raise ConfigurationError("Specify at least one site")

        if isinstance(outbound_interfaces, Interface):
            outbound_interfaces = [outbound_interfaces]
        outputs = list(outbound_interfaces)
        for iface in outputs:
            if not isinstance(iface, Interface) or not graph.contains(iface):
                raise ConfigurationError(f"Output {iface!r} is not an interface of this graph")

        iterative, post = build_ep_schedule(self.sites, outputs)
        self.iterative_schedule: Schedule = to_schedule(iterative, self.sites)
        self.post_convergence_schedule: Schedule = to_schedule(post, self.sites)

        entries = self.entries()
        infer_types(entries, self.catalog, self.recognition_types, message_types)
        self._check_site_types()
        if self.config.check_schedule:
            check_schedule(entries, self.sites)

        self.state = AlgorithmState.UNINITIALIZED
        self.stats: Dict[str, Any] = {
            "executions": 0,
            "iterations_run": 0,
            "total_iterations": 0,
            "converged": False,
        }
        logger.info(
            "Built expectation propagation: %d sites, %d iterative entries, %d post-convergence entries",
            len(self.sites),
            len(self.iterative_schedule),
            len(self.post_convergence_schedule),
        )

    # ----- alternative constructors -----
    @classmethod
    def from_graph(
        cls, graph: FactorGraph, sites: Sequence[Tuple[Interface, type]], **kwargs
    ) -> "ExpectationPropagation":
        """Build an algorithm whose final outputs are all interfaces facing sink nodes."""
        config = kwargs.get("config") or AlgorithmConfig()
        outputs = graph.interfaces_facing_sinks(config.sink_kinds)
        return cls(sites, outputs, graph=graph, **kwargs)

    @classmethod
    def for_interface(
        cls, outbound_interface: Interface, sites: Sequence[Tuple[Interface, type]], **kwargs
    ) -> "ExpectationPropagation":
        """Build an algorithm with a single final output interface."""
        return cls(sites, [outbound_interface], **kwargs)

    # ----- helpers -----
    def _parse_site(self, site: Any) -> Tuple[Interface, type]:
        try:
            interface, recognition_type = site
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Sites are (interface, recognition type) pairs, got {site!r}"
            ) from e
        if not isinstance(interface, Interface) or not self.graph.contains(interface):
            raise ConfigurationError(f"Site {interface!r} is not an interface of this graph")
        if not (isinstance(recognition_type, type) and issubclass(recognition_type, Distribution)):
            raise ConfigurationError(
                f"Recognition type of site {interface.label} must be a distribution type, "
                f"got {recognition_type!r}"
            )
        try:
            recognition_type.vague()
        except (ValueError, NotImplementedError) as e:
            raise ConfigurationError(
                f"Recognition type {recognition_type.__name__} of site {interface.label} "
                "has no vague value"
            ) from e
        return interface, recognition_type

    @staticmethod
    def _converged_predicate(callback: Any) -> Callable[[], bool]:
        if hasattr(callback, "check_converged"):
            return callback.check_converged
        if callable(callback):
            return callback
        raise ConfigurationError(
            "callback must be callable or provide check_converged(), "
            f"got {type(callback).__name__}"
        )

    def _check_site_types(self) -> None:
        for entry in self.iterative_schedule:
            if entry.rule_kind != RuleKind.EXPECTATION:
                continue
            recognition_type = self.recognition_types[entry.outbound_interface]
            if not matches(entry.outbound_type, recognition_type):
                raise TypeInferenceError(
                    f"Site {entry.outbound_interface.label} produces "
                    f"{type_name(entry.outbound_type)}, but its recognition type is "
                    f"{type_name(recognition_type)}",
                    node=entry.node,
                    rule_kind=entry.rule_kind,
                    inbound_types=entry.inbound_types,
                )

    def entries(self) -> List[ScheduleEntry]:
        """Return iterative followed by post-convergence entries."""
        return list(self.iterative_schedule) + list(self.post_convergence_schedule)

    @property
    def n_iterations(self) -> int:
        return self.config.n_iterations

    @n_iterations.setter
    def n_iterations(self, value: int) -> None:
        self.config = replace(self.config, n_iterations=value)

    # ----- preparation -----
    def prepare(self) -> "ExpectationPropagation":
        """
        Allocate typed messages on every scheduled interface and compile the entries.

        Existing messages of the right type are kept; others get a placeholder
        value of the inferred type. Each compiled entry holds references to
        the message objects it reads and writes, so replacing an interface's
        `Message` object after preparation requires calling `prepare()` again.
        """
        entries = self.entries()
        for entry in entries:
            interface = entry.outbound_interface
            if interface.message is None:
                interface.message = Message(entry.outbound_type.placeholder())
            elif not isinstance(interface.message.payload, entry.outbound_type):
                interface.message.payload = entry.outbound_type.placeholder()

        for entry in entries:
            entry.execute = self._compile(entry)

        self.state = AlgorithmState.READY
        return self

    def _compile(self, entry: ScheduleEntry) -> Callable[[], None]:
        node = entry.node
        outbound_id = entry.outbound_interface_id
        rule = entry.rule
        expected = entry.outbound_type
        label = entry.outbound_interface.label

        inbound_messages: List[Message | None] = []
        for interface in node.interfaces:
            if interface.id == outbound_id and entry.rule_kind == RuleKind.SUM_PRODUCT:
                inbound_messages.append(None)
            else:
                inbound_messages.append(interface.partner.message)
        outbound_message = entry.outbound_interface.message

        def execute() -> None:
            payloads = [m.payload if m is not None else None for m in inbound_messages]
            try:
                result = rule.action(node, outbound_id, payloads)
            except Exception as e:
                raise ExecutionError(f"{rule.name} failed on {label}: {e}", entry=entry) from e
            if not isinstance(result, expected):
                raise ExecutionError(
                    f"{rule.name} returned {type(result).__name__} on {label}, "
                    f"expected {type_name(expected)}",
                    entry=entry,
                )
            outbound_message.payload = result

        return execute

    # ----- execution -----
    def reset_sites(self) -> None:
        """Set every site message to a vague value of its recognition type."""
        for site in self.sites:
            site.message.payload = self.recognition_types[site].vague()

    def execute(self) -> None:
        """
        Run the algorithm on the graph.

        Sites are reset, then the iterative schedule runs until the callback
        reports convergence or `n_iterations` passes are done, then the
        post-convergence schedule runs once. A failing rule aborts the call
        with `ExecutionError`; messages updated so far are kept.
        """
        if self.state == AlgorithmState.RUNNING:
            raise ExecutionError("execute() called while the algorithm is already running")
        if self.state == AlgorithmState.UNINITIALIZED:
            self.prepare()

        self.state = AlgorithmState.RUNNING
        self.stats["executions"] += 1
        self.stats["iterations_run"] = 0
        self.stats["converged"] = False
        try:
            if self.config.reset_sites:
                self.reset_sites()

            for iteration in range(1, self.n_iterations + 1):
                self.iterative_schedule.execute()
                self.stats["iterations_run"] = iteration
                self.stats["total_iterations"] += 1
                logger.debug("Finished iteration %d", iteration)
                if self._check_converged():
                    self.stats["converged"] = True
                    logger.info("Converged after %d iterations", iteration)
                    break

            if self.post_convergence_schedule:
                self.post_convergence_schedule.execute()
        except Exception:
            self.state = AlgorithmState.FAILED
            raise

        self.state = AlgorithmState.READY

    # ----- inspection -----
    def describe(self) -> str:
        """Return a human readable summary of the algorithm and its schedules."""
        callback = getattr(self.callback, "__name__", type(self.callback).__name__)
        lines = [
            "ExpectationPropagation inference algorithm",
            f"    # sites: {len(self.sites)}",
            f"    max. number of iterations: {self.n_iterations}",
            f"    callback function: {callback}",
            "Iterative schedule:",
            self.iterative_schedule.describe(),
            "Post-convergence schedule:",
            self.post_convergence_schedule.describe(),
        ]
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.describe()

    def __repr__(self) -> str:
        return (
            f"ExpectationPropagation(sites={len(self.sites)}, "
            f"n_iterations={self.n_iterations}, state={self.state.name})"
        )
