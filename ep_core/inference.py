"""
Static message type inference over an ordered schedule.

A single forward pass is enough: the schedule builder places every entry
after the entries producing its (non-site) inbound messages, so by the time
an entry is visited the types of all its inbound messages are known.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Sequence

from .enums import RuleKind
from .errors import SchedulingError, TypeInferenceError
from .graph import Interface
from .messages import Absent, type_name
from .rules import RuleCatalog
from .schedule import ScheduleEntry

logger = logging.getLogger(__name__)


def collect_inbound_types(
    entry: ScheduleEntry,
    outbound_types: Mapping[Interface, type],
    recognition_types: Mapping[Interface, type],
) -> List[type]:
    """
    Look up the inbound message type of every interface of the entry's node.

    Args:
        entry: Entry to inspect
        outbound_types: Outbound types of the entries visited so far, by interface
        recognition_types: Recognition distribution type per site interface

    Returns:
        One type per node interface, in interface order

    Raises:
        SchedulingError: If an inbound message comes from an interface that
            has not been scheduled yet
    """
    inbound_types = []
    for interface in entry.node.interfaces:
        partner = interface.partner
        if interface.id == entry.outbound_interface_id and entry.rule_kind == RuleKind.SUM_PRODUCT:
            # No feedback message is assumed on the outbound interface
            inbound_types.append(Absent)
        elif partner in recognition_types:
            inbound_types.append(recognition_types[partner])
        elif partner in outbound_types:
            inbound_types.append(outbound_types[partner])
        else:
            source = partner.label if partner is not None else "nothing"
            raise SchedulingError(
                f"Inbound message on {interface.label} (from {source}) is needed by "
                f"{entry.outbound_interface.label} before it is scheduled"
            )
    return inbound_types


def infer_types(
    entries: Iterable[ScheduleEntry],
    catalog: RuleCatalog,
    recognition_types: Mapping[Interface, type],
    message_types: Mapping[Interface, type] | None = None,
) -> Dict[Interface, type]:
    """
    Annotate entries with inbound types, outbound type and resolved rule.

    Entries are processed strictly in the given order. For each entry the
    outbound type is taken from `message_types` when the caller fixed it
    (a matching rule must still exist), otherwise from the single applicable
    rule. The result is recorded before moving on, since later entries may
    read it.

    Args:
        entries: Iterative followed by post-convergence entries
        catalog: Rules to resolve against
        recognition_types: Recognition distribution type per site interface
        message_types: Optional fixed outbound types per interface

    Returns:
        The table of inferred outbound types by interface

    Raises:
        SchedulingError: On a dependency that is not scheduled yet
        TypeInferenceError: When no rule or more than one rule matches
    """
    message_types = message_types or {}
    outbound_types: Dict[Interface, type] = {}

    for entry in entries:
        inbound_types = collect_inbound_types(entry, outbound_types, recognition_types)
        outbound = entry.outbound_interface
        rule, outbound_type = catalog.resolve(
            entry.node,
            entry.outbound_interface_id,
            entry.rule_kind,
            inbound_types,
            outbound_type=message_types.get(outbound),
        )
        entry.inbound_types = tuple(inbound_types)
        entry.rule = rule
        entry.outbound_type = outbound_type
        outbound_types[outbound] = outbound_type
        logger.debug("Inferred %s", entry.describe())

    return outbound_types


def check_type_consistency(
    entries: Sequence[ScheduleEntry],
    catalog: RuleCatalog,
    recognition_types: Mapping[Interface, type],
) -> None:
    """
    Re-validate an annotated schedule without changing it.

    Detects entries whose stored inbound types differ from what inference
    would derive from the stored outbound types of their producers, and
    entries whose rule no longer accepts their stored inbound types.

    Raises:
        TypeInferenceError: On the first inconsistent entry
    """
    outbound_types: Dict[Interface, type] = {}
    for entry in entries:
        expected = tuple(collect_inbound_types(entry, outbound_types, recognition_types))
        if expected != tuple(entry.inbound_types):
            raise TypeInferenceError(
                f"Stale inbound types for {entry.outbound_interface.label}: recorded "
                f"({', '.join(type_name(t) for t in entry.inbound_types)}), "
                f"expected ({', '.join(type_name(t) for t in expected)})",
                node=entry.node,
                rule_kind=entry.rule_kind,
                inbound_types=entry.inbound_types,
            )
        if entry.rule is None or not entry.rule.is_applicable(entry.inbound_types):
            name = entry.rule.name if entry.rule else "no rule"
            raise TypeInferenceError(
                f"{name} does not accept the inbound types of {entry.outbound_interface.label}",
                node=entry.node,
                rule_kind=entry.rule_kind,
                inbound_types=entry.inbound_types,
            )
        outbound_types[entry.outbound_interface] = entry.outbound_type
