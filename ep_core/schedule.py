"""
Schedule construction.

A schedule is an ordered list of message computations. This module builds
them in two steps:

1. `generate_schedule_by_dfs` collects, by memoised depth-first search, the
   interfaces whose outbound messages are needed to compute a target
   message, each one after all of its own dependencies.
2. `build_ep_schedule` interleaves those searches site by site to obtain
   the iterative schedule of expectation propagation, then extends the
   same search to the final outputs for the post-convergence schedule.

`to_schedule` turns the resulting interface lists into `ScheduleEntry`
objects with a resolved rule kind; types and actions are attached later by
type inference and by `ExpectationPropagation.prepare()`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Sequence, Set, Tuple

from .enums import RuleKind
from .errors import ConfigurationError, SchedulingError
from .graph import Interface, Node
from .messages import type_name
from .rules import Rule, resolve_rule_kind

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class ScheduleEntry:
    """
    One planned message computation.

    Attributes:
        node: Node computing the message
        outbound_interface_id: 1-based id of the interface the message is sent on
        rule_kind: Sum-product or expectation
        rule: Resolved rule (set by type inference)
        inbound_types: Inferred inbound type vector, one per node interface
        outbound_type: Inferred outbound payload type
        execute: Compiled zero-argument action (set by prepare)
    """

    node: Node
    outbound_interface_id: int
    rule_kind: RuleKind = RuleKind.SUM_PRODUCT
    rule: Rule | None = None
    inbound_types: Tuple[type, ...] = ()
    outbound_type: type | None = None
    execute: Callable[[], None] | None = field(default=None, repr=False)

    @property
    def outbound_interface(self) -> Interface:
        return self.node.interfaces[self.outbound_interface_id - 1]

    def describe(self) -> str:
        rule = self.rule.name if self.rule else self.rule_kind.name
        inbound = ", ".join(type_name(t) for t in self.inbound_types)
        out = type_name(self.outbound_type) if self.outbound_type else "?"
        return f"{self.outbound_interface.label:<24} {rule:<24} ({inbound}) -> {out}"


class Schedule(list):
    """Ordered list of `ScheduleEntry`; execution order is list order."""

    def interfaces(self) -> List[Interface]:
        return [entry.outbound_interface for entry in self]

    def execute(self) -> None:
        for entry in self:
            entry.execute()

    def describe(self) -> str:
        """Return a printable listing, one numbered line per entry."""
        if not self:
            return "(empty schedule)"
        return "\n".join(f"{i:>3}. {entry.describe()}" for i, entry in enumerate(self, start=1))


def generate_schedule_by_dfs(
    outbound_interface: Interface,
    backtrace: List[Interface] | None = None,
    _call_stack: List[Interface] | None = None,
) -> List[Interface]:
    """
    Extend `backtrace` with everything needed to compute the message on `outbound_interface`.

    The message outward on an interface depends on the inbound messages of
    all other interfaces of the same node, i.e. on the messages outward on
    their partners. Those are visited first, recursively; interfaces that are
    already in `backtrace` are not revisited. Each interface therefore
    appears once and after all of its dependencies.

    Args:
        outbound_interface: Interface whose outbound message is wanted
        backtrace: Schedule so far; extended in place
        _call_stack: Interfaces currently being expanded (loop detection)

    Returns:
        The extended `backtrace`

    Raises:
        SchedulingError: If a needed interface is unconnected, or the
            dependencies loop back onto an interface being expanded
    """
    if backtrace is None:
        backtrace = []
    if outbound_interface in backtrace:
        return backtrace
    call_stack = _call_stack if _call_stack is not None else []
    node = outbound_interface.node

    call_stack.append(outbound_interface)
    for interface in node.interfaces:
        if interface is outbound_interface:
            continue
        partner = interface.partner
        if partner is None:
            raise SchedulingError(
                f"Cannot schedule {outbound_interface.label}: {interface.label} is not connected"
            )
        if partner in backtrace:
            continue
        if partner in call_stack:
            loop = " -> ".join(i.label for i in call_stack[call_stack.index(partner):])
            raise SchedulingError(
                f"Loop detected around {partner.label} ({loop}); break it with a site"
            )
        generate_schedule_by_dfs(partner, backtrace, call_stack)
    call_stack.pop()

    backtrace.append(outbound_interface)
    return backtrace


def build_ep_schedule(
    sites: Sequence[Interface], outbound_interfaces: Iterable[Interface] = ()
) -> Tuple[List[Interface], List[Interface]]:
    """
    Build the iterative and post-convergence interface orders for a set of sites.

    For each site i in order, the cavity message into site i is scheduled
    (everything needed for the message on the site's partner), followed by
    site i itself. Site messages are supplied from the previous pass, so all
    sites act as leaves of the search: the site list is prepended during the
    search and stripped afterwards. Interfaces already scheduled by an
    earlier site are not repeated, so one pass over the result updates every
    site exactly once, in site order.

    The post-convergence order continues the same search from each final
    outbound interface and keeps only what the iterative order lacks.

    Args:
        sites: Site interfaces, in update order
        outbound_interfaces: Final outputs to compute after convergence

    Returns:
        (iterative interface order, post-convergence interface order)

    Raises:
        ConfigurationError: If no site is given
    """
    sitelist = list(sites)
    if not sitelist:
        raise ConfigurationError("Specify at least one site")

    for site in sitelist:
        if site.partner is None:
            raise ConfigurationError(f"Site {site.label} is not connected")

    total: List[Interface] = []
    for i, site in enumerate(sitelist):
        # All sites are leaves while computing the cavity message
        total = generate_schedule_by_dfs(site.partner, sitelist + total)[len(sitelist):]
        other_sites = sitelist[:i] + sitelist[i + 1:]
        total = generate_schedule_by_dfs(site, other_sites + total)[len(other_sites):]
        logger.debug("Scheduled site %s; iterative order has %d entries", site.label, len(total))

    n_iterative = len(total)
    for outbound_interface in outbound_interfaces:
        total = generate_schedule_by_dfs(outbound_interface, total)

    return total[:n_iterative], total[n_iterative:]


def to_schedule(interfaces: Iterable[Interface], sites: Iterable[Interface] = ()) -> Schedule:
    """Convert an interface order into schedule entries with resolved rule kinds."""
    site_set: Set[Interface] = set(sites)
    return Schedule(
        ScheduleEntry(
            node=iface.node,
            outbound_interface_id=iface.id,
            rule_kind=resolve_rule_kind(iface, site_set),
        )
        for iface in interfaces
    )


def check_schedule(schedule: Sequence[ScheduleEntry], sites: Iterable[Interface] = ()) -> None:
    """
    Verify single production and dependency ordering of a schedule.

    Every outbound interface may be produced once. Every inbound message an
    entry reads must have been produced by an earlier entry, unless it comes
    from a site (site messages are supplied by the previous pass).

    Raises:
        SchedulingError: On the first violation found
    """
    site_set = set(sites)
    produced: Set[Interface] = set()
    for position, entry in enumerate(schedule, start=1):
        outbound = entry.outbound_interface
        if outbound in produced:
            raise SchedulingError(
                f"{outbound.label} is produced twice (again at position {position})"
            )
        for interface in entry.node.interfaces:
            if interface is outbound and entry.rule_kind == RuleKind.SUM_PRODUCT:
                continue
            partner = interface.partner
            if partner is None:
                raise SchedulingError(f"{interface.label} is not connected")
            if partner in site_set or partner in produced:
                continue
            raise SchedulingError(
                f"{outbound.label} at position {position} reads {partner.label} "
                "before it is scheduled"
            )
        produced.add(outbound)
