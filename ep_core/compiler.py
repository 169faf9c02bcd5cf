"""
YAML model compiler.

This module compiles a YAML model description into a `FactorGraph` plus the
site list, final outputs and algorithm settings needed to build an
`ExpectationPropagation` algorithm.

YAML schema (minimal):

nodes:
  - id: x
    kind: prior
    prior: {type: GaussianMeanVariance, m: 0.0, v: 1.0}
  - id: eq
    kind: equality
    degree: 3
  - id: lik
    kind: probit
  - id: y
    kind: prior
    prior: {type: Delta, m: 1.0}
  - id: sink
    kind: terminal
edges:
  - [x.out, eq.1]
  - [eq.2, sink.in]
  - [eq.3, lik.real]
  - [lik.bin, y.out]
sites:
  - interface: lik.real
    recognition: GaussianWeightedMeanPrecision
outputs: [eq.2]          # optional; defaults to interfaces facing sinks
message_types:           # optional fixed outbound types
  eq.3: GaussianWeightedMeanPrecision
algorithm:
  n_iterations: 20

Notes:
- Interface references are 'node_id.interface' where the interface is a
  name ('out', 'real', ...) or a 1-based position.
- Node keys other than id, kind and degree become node params; mappings with
  a 'type' key are turned into distributions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

import yaml

from .algorithm import ExpectationPropagation
from .config import AlgorithmConfig
from .errors import ConfigurationError
from .graph import FactorGraph, Interface
from .library import make_node
from .messages import DISTRIBUTIONS, distribution_from_dict


@dataclass
class CompiledModel:
    """
    Result of compiling a model description.

    Attributes:
        graph: The compiled factor graph
        sites: (site interface, recognition type) pairs
        outputs: Explicit final outputs, or None to use the interfaces facing sinks
        message_types: Fixed outbound types per interface
        config: Algorithm configuration from the 'algorithm' section
    """

    graph: FactorGraph
    sites: List[Tuple[Interface, type]] = field(default_factory=list)
    outputs: List[Interface] | None = None
    message_types: Dict[Interface, type] = field(default_factory=dict)
    config: AlgorithmConfig = field(default_factory=AlgorithmConfig)

    def build(self, **kwargs: Any) -> ExpectationPropagation:
        """Build the expectation propagation algorithm for this model."""
        kwargs.setdefault("config", self.config)
        kwargs.setdefault("message_types", self.message_types)
        if self.outputs is None:
            return ExpectationPropagation.from_graph(self.graph, self.sites, **kwargs)
        return ExpectationPropagation(self.sites, self.outputs, graph=self.graph, **kwargs)


def _distribution_type(name: Any) -> type:
    if name not in DISTRIBUTIONS:
        raise ConfigurationError(f"Unknown distribution type: {name!r}")
    return DISTRIBUTIONS[name]


def _param_value(value: Any) -> Any:
    if isinstance(value, dict) and "type" in value:
        try:
            return distribution_from_dict(value)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
    return value


def _interface(g: FactorGraph, ref: Any) -> Interface:
    try:
        return g.interface(str(ref))
    except KeyError as e:
        raise ConfigurationError(f"Unknown interface reference {ref!r}") from e


def compile_from_dict(spec: Dict[str, Any]) -> CompiledModel:
    """
    Compile a YAML-parsed dictionary into a `CompiledModel`.

    Args:
        spec: Parsed YAML dictionary

    Returns:
        CompiledModel: Graph, sites, outputs and settings

    Raises:
        ConfigurationError: On ill-formed nodes, edges, sites or settings
    """
    g = FactorGraph()

    for item in spec.get("nodes", []) or []:
        item = dict(item or {})
        node_id = item.pop("id", None)
        kind = item.pop("kind", None)
        if not node_id or not kind:
            raise ConfigurationError(f"Nodes need an id and a kind, got {item!r}")
        degree = item.pop("degree", 3)
        if isinstance(degree, bool) or not isinstance(degree, int) or degree < 1:
            raise ConfigurationError(
                f"Node '{node_id}' degree must be a positive integer, got {degree!r}"
            )
        params = {k: _param_value(v) for k, v in item.items()}
        if kind == "prior" and "prior" not in params:
            raise ConfigurationError(f"Prior node '{node_id}' needs a 'prior' distribution")
        g.add_node(make_node(str(node_id), str(kind), degree=degree, **params))

    for edge in spec.get("edges", []) or []:
        if not isinstance(edge, (list, tuple)) or len(edge) != 2:
            raise ConfigurationError(f"Edges are pairs of interface references, got {edge!r}")
        g.connect(_interface(g, edge[0]), _interface(g, edge[1]))

    sites = []
    for site in spec.get("sites", []) or []:
        if not isinstance(site, dict) or "interface" not in site:
            raise ConfigurationError(f"Sites need an 'interface' entry, got {site!r}")
        recognition = _distribution_type(site.get("recognition", "GaussianWeightedMeanPrecision"))
        sites.append((_interface(g, site["interface"]), recognition))

    outputs = None
    if spec.get("outputs") is not None:
        outputs = [_interface(g, ref) for ref in spec["outputs"]]

    message_types = {
        _interface(g, ref): _distribution_type(name)
        for ref, name in (spec.get("message_types") or {}).items()
    }

    config = AlgorithmConfig.from_dict(spec.get("algorithm"))
    return CompiledModel(g, sites, outputs, message_types, config)


def compile_from_yaml(yaml_text: str) -> CompiledModel:
    """Compile from YAML text into a `CompiledModel`."""
    try:
        data = yaml.safe_load(yaml_text) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Model must be a mapping, got {type(data).__name__}")
    return compile_from_dict(data)


def compile_from_file(path: str) -> CompiledModel:
    """Compile from a YAML file path into a `CompiledModel`."""
    with open(path, "r", encoding="utf-8") as f:
        txt = f.read()
    return compile_from_yaml(txt)
