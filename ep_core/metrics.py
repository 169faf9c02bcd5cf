"""
Convergence monitors and run statistics.

This module provides:
- Ready-made convergence callbacks for `ExpectationPropagation`
- Convenience helpers to read run statistics from an algorithm

The algorithm records the following statistics in `algorithm.stats`:
- executions: number of execute() calls
- iterations_run: iterative passes of the last execute() call
- total_iterations: iterative passes over all execute() calls
- converged: whether the last execute() call stopped on the callback
"""

from __future__ import annotations

from typing import Dict, Iterable, List

import numpy as np

from .graph import Interface


class SiteChangeMonitor:
    """
    Converge once no site message changes by more than `tol` between passes.

    The monitor compares the parameter vectors of the site messages after
    each pass with those after the previous pass. The first check after
    construction or `reset()` never converges; call `reset()` between
    execute() calls to compare passes of one run only.

    Attributes:
        history: Largest absolute parameter change per pass
    """

    def __init__(self, sites: Iterable[Interface], tol: float = 1e-6):
        self.sites: List[Interface] = list(sites)
        self.tol = float(tol)
        self.history: List[float] = []
        self._previous: List[np.ndarray] | None = None

    def reset(self) -> None:
        self.history.clear()
        self._previous = None

    def check_converged(self) -> bool:
        current = [site.message.payload.parameters() for site in self.sites]
        previous, self._previous = self._previous, current
        if previous is None:
            return False
        change = max(
            float(np.max(np.abs(c - p))) if c.shape == p.shape else np.inf
            for c, p in zip(current, previous)
        )
        self.history.append(change)
        return change <= self.tol

    def __call__(self) -> bool:
        return self.check_converged()


class IterationCounter:
    """Callback that counts its calls and reports convergence after `stop_after` calls."""

    def __init__(self, stop_after: int | None = None):
        self.stop_after = stop_after
        self.calls = 0

    def check_converged(self) -> bool:
        self.calls += 1
        return self.stop_after is not None and self.calls >= self.stop_after

    def __call__(self) -> bool:
        return self.check_converged()


def iterations_run(algorithm) -> int:
    """Return the number of iterative passes run by the last execute() call."""
    return int(algorithm.stats.get("iterations_run", 0))


def has_converged(algorithm) -> bool:
    """Return True if the last execute() call stopped on the convergence callback."""
    return bool(algorithm.stats.get("converged", False))


def site_summary(algorithm) -> Dict[str, Dict[str, float]]:
    """Return mean and variance of every site message, keyed by interface label."""
    summary = {}
    for site in algorithm.sites:
        payload = site.message.payload if site.message is not None else None
        if payload is None:
            continue
        summary[site.label] = {"mean": float(payload.mean()), "var": float(payload.var())}
    return summary
