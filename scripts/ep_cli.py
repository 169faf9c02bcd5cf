#!/usr/bin/env python3
"""
Expectation propagation CLI

Usage modes:
- Default run: compile YAML model, execute the algorithm, print site and output messages
- Schedule: print the iterative and post-convergence schedules
- Validation: check graph structure, print issues
- Export: write GraphML for external tools
- Utility: list sample models, show version, dry-run compile only
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from glob import glob
from pathlib import Path
from typing import Any, Dict, List

from ep_core import __version__ as ep_version
from ep_core.compiler import compile_from_file
from ep_core.errors import InferenceError
from ep_core.metrics import SiteChangeMonitor, site_summary


def parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Build and run expectation propagation from a YAML model",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    # Utilities / meta
    p.add_argument("--version", action="store_true", help="Print version and exit")
    p.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v, -vv)")
    p.add_argument("--list-models", action="store_true", help="List bundled sample YAML models and exit")

    # Primary input
    p.add_argument("yaml", nargs="?", help="Path to YAML model (e.g., scripts/probit.yaml)")

    # Execution
    p.add_argument("--iterations", type=int, default=None, help="Override the maximum number of iterations")
    p.add_argument("--tol", type=float, default=None, help="Stop when site messages change less than this")
    p.add_argument("--dry-run", action="store_true", help="Compile and schedule only; do not execute")
    p.add_argument("--out", type=str, default="", help="Optional output JSON file path")

    # Analysis / export
    p.add_argument("--schedule", action="store_true", help="Print the compiled schedules")
    p.add_argument("--validate", action="store_true", help="Run graph structure validation")
    p.add_argument("--export-graphml", type=str, default="", help="Export compiled graph to GraphML at given path")

    return p.parse_args(argv)


def setup_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="[%(levelname)s] %(name)s: %(message)s")


def find_sample_models() -> List[str]:
    here = Path(__file__).resolve()
    repo_root = here.parent.parent
    candidates = []
    for base in [repo_root, here.parent]:
        candidates.extend(sorted(glob(str(base / "*.yaml"))))
        candidates.extend(sorted(glob(str(base / "scripts" / "*.yaml"))))
    seen = set()
    result = []
    for c in candidates:
        if c not in seen:
            seen.add(c)
            result.append(c)
    return result


def write_output(payload: Dict[str, Any], path: str) -> None:
    if path:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
    else:
        print(json.dumps(payload, indent=2))


def main(argv: List[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    if args.version:
        print(ep_version)
        return 0

    if args.list_models:
        print(json.dumps(find_sample_models(), indent=2))
        return 0

    if not args.yaml:
        print("error: missing YAML path (try --list-models)", file=sys.stderr)
        return 2

    logging.info("Compiling model from %s", args.yaml)
    try:
        model = compile_from_file(args.yaml)
    except (InferenceError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    if args.validate:
        issues = model.graph.validate()
        logging.info("Validation issues: %d", sum(len(v) for v in issues.values()))
        print(json.dumps(issues, indent=2))
        if issues:
            return 1

    if args.export_graphml:
        logging.info("Exporting GraphML to %s", args.export_graphml)
        model.graph.export_graphml(args.export_graphml)

    kwargs: Dict[str, Any] = {}
    if args.iterations is not None:
        kwargs["n_iterations"] = args.iterations
    monitor = None
    if args.tol is not None:
        monitor = SiteChangeMonitor([site for site, _ in model.sites], tol=args.tol)
        kwargs["callback"] = monitor

    try:
        algo = model.build(**kwargs)
    except InferenceError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    if args.schedule:
        print(algo.describe())

    if args.dry_run:
        minimal = {
            "sites": [site.label for site in algo.sites],
            "iterative_schedule": [i.label for i in algo.iterative_schedule.interfaces()],
            "post_convergence_schedule": [
                i.label for i in algo.post_convergence_schedule.interfaces()
            ],
        }
        write_output(minimal, args.out)
        return 0

    try:
        algo.execute()
    except InferenceError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    summary: Dict[str, Any] = {
        "stats": algo.stats,
        "sites": site_summary(algo),
        "outputs": {
            entry.outbound_interface.label: repr(entry.outbound_interface.message.payload)
            for entry in algo.post_convergence_schedule
        },
    }
    if monitor is not None:
        summary["site_changes"] = monitor.history

    write_output(summary, args.out)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
