"""
Factor graph data structures.

This module defines the graph model that schedules are built over:
- Interface: A port on a node; linked to exactly one partner port on another node
- Node: A computation unit with an ordered list of interfaces
- FactorGraph: Container for nodes and the edges between their interfaces

The scheduling core only reads this structure. Messages are the one mutable
part: every interface carries a single message slot holding the last message
sent outward on it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from .errors import ConfigurationError
from .messages import Message

try:
    import networkx as nx

    HAS_NETWORKX = True
except ImportError:
    HAS_NETWORKX = False


@dataclass(eq=False)
class Interface:
    """
    A directed edge endpoint on a node.

    Interfaces compare and hash by identity, so they can be used as keys in
    schedule lookup tables.

    Attributes:
        node: Node that owns this interface
        id: 1-based position of the interface on its node
        name: Optional human readable name (e.g. 'out', 'in1')
        partner: Interface at the other end of the edge, or None if unconnected
        message: Message last sent outward on this interface, None until allocated
    """

    node: "Node"
    """Owning node."""

    id: int
    """1-based position in `node.interfaces`."""

    name: str = ""
    """Optional name, unique per node."""

    partner: "Interface | None" = field(default=None, repr=False)
    """Interface on the other end of the edge."""

    message: Message | None = field(default=None, repr=False)
    """Outbound message slot."""

    @property
    def label(self) -> str:
        return f"{self.node.id}.{self.name or self.id}"

    def __repr__(self) -> str:
        return f"Interface({self.label})"


@dataclass(eq=False)
class Node:
    """
    A computation unit in the factor graph.

    The node `kind` is the key used by the rule catalog to find computation
    rules. Node-specific constants (for instance the distribution held by a
    prior node) live in `params`.

    Attributes:
        id: Unique identifier of the node in its graph
        kind: Node type used for rule lookup ('equality', 'prior', ...)
        interfaces: Ordered list of interfaces
        params: Node constants read by the rules
        meta: Free-form metadata, not used by the core
    """

    id: str
    kind: str
    interfaces: List[Interface] = field(default_factory=list)
    params: Dict[str, Any] = field(default_factory=dict)
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls, node_id: str, kind: str, interface_names: Sequence[str], **params: Any
    ) -> "Node":
        """
        Build a node with one interface per name.

        Args:
            node_id: Unique node identifier
            kind: Node type used for rule lookup
            interface_names: Names of the interfaces, in order
            **params: Node constants

        Returns:
            Node: The new, unconnected node
        """
        node = cls(node_id, kind, params=dict(params))
        for i, name in enumerate(interface_names, start=1):
            node.interfaces.append(Interface(node, i, str(name)))
        return node

    def interface(self, key: int | str) -> Interface:
        """
        Look up an interface by 1-based id or by name.

        Raises:
            KeyError: If no such interface exists
        """
        if isinstance(key, int) or (isinstance(key, str) and key.isdigit()):
            idx = int(key)
            if 1 <= idx <= len(self.interfaces):
                return self.interfaces[idx - 1]
        for iface in self.interfaces:
            if iface.name == key:
                return iface
        raise KeyError(f"Node '{self.id}' has no interface {key!r}")

    def __repr__(self) -> str:
        return f"Node({self.id!r}, kind={self.kind!r}, interfaces={len(self.interfaces)})"


class FactorGraph:
    """
    Container for nodes and edges of a factor graph.

    Edges are stored implicitly as partner links between interfaces. Node
    insertion order is preserved and determines the order of
    `interfaces_facing_sinks()`.

    Thread-safety: nothing here is synchronised. Two algorithms built over
    the same graph write to the same message slots, so executing them
    concurrently is the caller's responsibility.

    Attributes:
        nodes: Dictionary mapping node IDs to Node objects
    """

    def __init__(self):
        self.nodes: Dict[str, Node] = {}

    def add_node(self, node: Node) -> Node:
        """
        Add a node to the graph.

        Raises:
            ConfigurationError: If a node with the same ID already exists
        """
        if node.id in self.nodes:
            raise ConfigurationError(f"Duplicate node id '{node.id}'")
        self.nodes[node.id] = node
        return node

    def interface(self, ref: str | Interface) -> Interface:
        """
        Resolve an interface reference of the form 'node_id.interface'.

        Args:
            ref: Either an Interface (returned unchanged) or a dotted reference
                where the part after the last dot is an interface name or id

        Raises:
            KeyError: If the node or the interface is unknown
        """
        if isinstance(ref, Interface):
            return ref
        node_id, _, key = ref.rpartition(".")
        if not node_id or node_id not in self.nodes:
            raise KeyError(f"Unknown interface reference {ref!r}")
        return self.nodes[node_id].interface(key)

    def connect(self, a: str | Interface, b: str | Interface) -> Tuple[Interface, Interface]:
        """
        Link two interfaces as partners.

        Raises:
            ConfigurationError: If an interface is foreign to this graph,
                already connected, or both ends are the same interface
        """
        ia, ib = self.interface(a), self.interface(b)
        for iface in (ia, ib):
            if self.nodes.get(iface.node.id) is not iface.node:
                raise ConfigurationError(f"{iface!r} does not belong to this graph")
            if iface.partner is not None:
                raise ConfigurationError(f"{iface!r} is already connected to {iface.partner!r}")
        if ia is ib:
            raise ConfigurationError(f"Cannot connect {ia!r} to itself")
        ia.partner = ib
        ib.partner = ia
        return ia, ib

    def contains(self, iface: Interface) -> bool:
        return self.nodes.get(iface.node.id) is iface.node

    def interfaces(self) -> List[Interface]:
        """Return all interfaces in node insertion order."""
        return [iface for node in self.nodes.values() for iface in node.interfaces]

    def edges(self) -> List[Tuple[Interface, Interface]]:
        """Return each edge once as an (interface, partner) pair."""
        seen = set()
        result = []
        for iface in self.interfaces():
            if iface.partner is None or id(iface) in seen:
                continue
            seen.add(id(iface))
            seen.add(id(iface.partner))
            result.append((iface, iface.partner))
        return result

    def interfaces_facing_sinks(
        self, sink_kinds: Iterable[str] = ("terminal",)
    ) -> List[Interface]:
        """
        Return every interface whose partner belongs to a sink node.

        These are the interfaces on which final messages towards external
        sinks are sent; whole-graph algorithms use them as final outputs.

        Args:
            sink_kinds: Node kinds regarded as external sinks
        """
        sink_kinds = tuple(sink_kinds)
        return [
            iface
            for node in self.nodes.values()
            if node.kind not in sink_kinds
            for iface in node.interfaces
            if iface.partner is not None and iface.partner.node.kind in sink_kinds
        ]

    def validate(self) -> Dict[str, List[str]]:
        """
        Check the graph structure.

        Returns:
            Dictionary of issue lists by category (empty categories removed):
            unconnected interfaces, asymmetric partner links, foreign partners
            and disconnected components
        """
        issues = {
            "unconnected_interfaces": [],
            "partner_issues": [],
            "connectivity_issues": [],
        }

        for iface in self.interfaces():
            if iface.partner is None:
                issues["unconnected_interfaces"].append(f"{iface.label} has no partner")
                continue
            if iface.partner.partner is not iface:
                issues["partner_issues"].append(
                    f"{iface.label} -> {iface.partner.label} is not mirrored"
                )
            if not self.contains(iface.partner):
                issues["partner_issues"].append(
                    f"{iface.label} is connected to foreign interface {iface.partner.label}"
                )

        components = self._find_connected_components()
        if len(components) > 1:
            issues["connectivity_issues"].append(
                f"Graph has {len(components)} disconnected components"
            )

        return {k: v for k, v in issues.items() if v}

    def _find_connected_components(self) -> List[List[str]]:
        visited = set()
        components = []

        def dfs_component(node_id: str, component: List[str]) -> None:
            visited.add(node_id)
            component.append(node_id)
            for iface in self.nodes[node_id].interfaces:
                if iface.partner is None:
                    continue
                neighbor = iface.partner.node.id
                if neighbor in self.nodes and neighbor not in visited:
                    dfs_component(neighbor, component)

        for node_id in self.nodes:
            if node_id not in visited:
                component = []
                dfs_component(node_id, component)
                components.append(sorted(component))

        return components

    def to_networkx(self) -> "nx.MultiGraph":
        """
        Convert the factor graph to a NetworkX MultiGraph for export/visualization.

        Raises:
            ImportError: If NetworkX is not available
        """
        if not HAS_NETWORKX:
            raise ImportError(
                "NetworkX is required for graph conversion. Install with: pip install networkx"
            )

        G = nx.MultiGraph()
        for node_id, node in self.nodes.items():
            G.add_node(node_id, kind=node.kind, interfaces=len(node.interfaces))
        for a, b in self.edges():
            G.add_edge(a.node.id, b.node.id, ports=f"{a.label}--{b.label}")
        return G

    def export_graphml(self, filepath: str) -> None:
        """Export the factor graph to GraphML (requires NetworkX)."""
        nx.write_graphml(self.to_networkx(), filepath)

    def __repr__(self) -> str:
        return f"FactorGraph(nodes={len(self.nodes)}, edges={len(self.edges())})"
