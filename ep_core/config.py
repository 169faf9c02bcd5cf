"""
Configuration objects for expectation propagation algorithms.

Exposes the tunable construction parameters (iteration bound, sink node
kinds, schedule checks) so that experiments and model files can change them
without editing core logic.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Dict, Tuple

from .errors import ConfigurationError


@dataclass
class AlgorithmConfig:
    """
    Configuration for `ExpectationPropagation` construction and execution.

    Keyword arguments passed directly to the algorithm take precedence over
    the values stored here.
    """

    # Maximum number of passes over the iterative schedule per execute() call
    n_iterations: int = 100

    # Node kinds whose interfaces count as external sinks; the interfaces
    # facing them are the default final outputs of a whole-graph algorithm
    sink_kinds: Tuple[str, ...] = ("terminal",)

    # Reset every site message to a vague value at the start of execute()
    reset_sites: bool = True

    # Verify dependency ordering and single production after scheduling
    check_schedule: bool = True

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ConfigurationError: If `n_iterations` is not a positive integer or
                `sink_kinds` is empty
        """
        if (
            isinstance(self.n_iterations, bool)
            or not isinstance(self.n_iterations, int)
            or self.n_iterations < 1
        ):
            raise ConfigurationError(
                f"n_iterations must be a positive integer, got {self.n_iterations!r}"
            )
        if isinstance(self.sink_kinds, str):
            self.sink_kinds = (self.sink_kinds,)
        self.sink_kinds = tuple(self.sink_kinds)
        if not self.sink_kinds:
            raise ConfigurationError("sink_kinds must name at least one node kind")

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "AlgorithmConfig":
        """
        Build a configuration from a plain mapping (e.g. a parsed YAML section).

        Args:
            data: Mapping of field names to values; None gives the defaults

        Returns:
            AlgorithmConfig: The validated configuration

        Raises:
            ConfigurationError: On unknown keys or invalid values
        """
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown algorithm settings: {unknown}")
        return cls(**data)
