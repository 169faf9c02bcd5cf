"""
Core enumerations for the expectation propagation scheduling core.

This module defines the rule kinds used to select computation rules for
schedule entries and the lifecycle states of a compiled algorithm.
"""

from enum import Enum, auto


class RuleKind(Enum):
    """
    Families of message computation rules.

    Every schedule entry is computed by a rule of exactly one kind:
    - SUM_PRODUCT: Default rule; the inbound message on the outbound interface
      itself is ignored (treated as absent)
    - EXPECTATION: Site update rule; consumes the cavity message arriving on
      the outbound interface together with all other inbound messages
    """

    SUM_PRODUCT = auto()
    """Generic sum-product update, used for every non-site entry."""

    EXPECTATION = auto()
    """Expectation propagation site update."""


class AlgorithmState(Enum):
    """
    Lifecycle states of a compiled `ExpectationPropagation` algorithm.

    - UNINITIALIZED: Schedules are built and typed, but no messages have been
      allocated on the graph and no entry is compiled yet
    - READY: Messages are allocated and every entry has an executable action
    - RUNNING: An `execute()` call is in progress
    - FAILED: The last `execute()` call aborted with an execution error
    """

    UNINITIALIZED = auto()
    """Compiled schedules, no allocated messages."""

    READY = auto()
    """Prepared and executable."""

    RUNNING = auto()
    """Inside `execute()`."""

    FAILED = auto()
    """Last execution aborted; messages may be partially updated."""
