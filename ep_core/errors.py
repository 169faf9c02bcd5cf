"""
Exception taxonomy for schedule construction and execution.

All construction-time problems are raised eagerly while an algorithm is
being built, so a successfully constructed algorithm is type-consistent and
executable. A rule failing inside `execute()` surfaces as `ExecutionError`.
"""

from __future__ import annotations

from typing import Any, Sequence


class InferenceError(Exception):
    """Base class of every error raised by `ep_core`."""


class ConfigurationError(InferenceError, ValueError):
    """Invalid construction arguments (e.g. no sites, bad iteration bound)."""


class SchedulingError(InferenceError):
    """A dependency is missing from the schedule, or the graph has an unbroken loop."""


class TypeInferenceError(InferenceError):
    """
    No rule, or more than one rule, accepts the inferred inbound types of an entry.

    Attributes:
        node: Node owning the offending schedule entry
        rule_kind: Rule kind that was being resolved
        inbound_types: Inbound type vector that was attempted
    """

    def __init__(
        self,
        message: str,
        node: Any = None,
        rule_kind: Any = None,
        inbound_types: Sequence[type] | None = None,
    ):
        super().__init__(message)
        self.node = node
        self.rule_kind = rule_kind
        self.inbound_types = tuple(inbound_types or ())


class ExecutionError(InferenceError):
    """
    A compiled rule action failed while executing a schedule.

    Attributes:
        entry: The schedule entry whose action failed
    """

    def __init__(self, message: str, entry: Any = None):
        super().__init__(message)
        self.entry = entry
