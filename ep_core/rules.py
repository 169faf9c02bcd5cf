"""
Computation rules and rule resolution.

A rule is a static triple attached to a node kind and a rule kind:

- an applicability predicate over the inbound type vector,
- an outbound type (a constant type, or a function computing it),
- an action turning inbound payloads into the outbound payload.

Rules are kept in a `RuleCatalog`. Resolution is a linear scan over the
registered rules for the node kind; exactly one rule must accept the inbound
types of a schedule entry, otherwise type inference fails at construction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Sequence, Tuple

from .enums import RuleKind
from .errors import TypeInferenceError
from .messages import Distribution, matches, type_name

Action = Callable[["Node", int, List["Distribution | None"]], Distribution]


@dataclass(frozen=True, eq=False)
class Rule:
    """
    A registered message computation rule.

    Attributes:
        name: Rule name, reported in errors and schedule listings
        node_kind: Node kind the rule applies to
        kind: Rule kind (sum-product or expectation)
        is_applicable: Predicate over the inbound type vector
        outbound_type: Outbound payload type, or a callable
            ``(node, inbound_types) -> type``
        action: Callable ``(node, outbound_id, inbound_payloads) -> payload``;
            the payload at the outbound position is None for sum-product rules
        outbound_id: Restricts the rule to one outbound interface id (None = any)
    """

    name: str
    node_kind: str
    kind: RuleKind
    is_applicable: Callable[[Sequence[type]], bool]
    outbound_type: type | Callable
    action: Action
    outbound_id: int | None = None

    def applies_to(self, node_kind: str, kind: RuleKind, outbound_id: int) -> bool:
        return (
            self.node_kind == node_kind
            and self.kind == kind
            and (self.outbound_id is None or self.outbound_id == outbound_id)
        )

    def resolve_outbound_type(self, node, inbound_types: Sequence[type]) -> type:
        if isinstance(self.outbound_type, type):
            return self.outbound_type
        return self.outbound_type(node, tuple(inbound_types))


def fixed_inbound_types(*expected) -> Callable[[Sequence[type]], bool]:
    """
    Build an applicability predicate from a fixed inbound type signature.

    Each element of `expected` is a type or a tuple of types (a union);
    `object` accepts any type.
    """

    def is_applicable(inbound_types: Sequence[type]) -> bool:
        if len(inbound_types) != len(expected):
            return False
        return all(matches(t, e) for t, e in zip(inbound_types, expected))

    return is_applicable


def _is_distribution_type(t) -> bool:
    return isinstance(t, type) and issubclass(t, Distribution)


def _can_allocate(t: type) -> bool:
    try:
        t.placeholder()
    except (NotImplementedError, ValueError, TypeError):
        return False
    return True


def resolve_rule_kind(outbound_interface, sites: Iterable) -> RuleKind:
    """
    Select the rule kind for an entry computing a message on `outbound_interface`.

    Sum-product is the default; entries whose outbound interface is a site
    use the expectation rule.
    """
    return RuleKind.EXPECTATION if outbound_interface in sites else RuleKind.SUM_PRODUCT


class RuleCatalog:
    """
    Registry of computation rules.

    Rules can be registered directly with `register()` or declared with the
    `sum_product_rule()` / `expectation_rule()` decorators:

        catalog = RuleCatalog()

        @catalog.sum_product_rule("prior", inbound_types=(Absent,),
                                  outbound_type=GaussianMeanVariance)
        def prior_out(node, outbound_id, inbounds):
            return node.params["prior"].copy()
    """

    def __init__(self, rules: Iterable[Rule] = ()):
        self._rules: List[Rule] = list(rules)

    def register(self, rule: Rule) -> Rule:
        self._rules.append(rule)
        return rule

    def rule(
        self,
        node_kind: str,
        *,
        kind: RuleKind = RuleKind.SUM_PRODUCT,
        outbound_type: type | Callable,
        inbound_types: Sequence | None = None,
        is_applicable: Callable[[Sequence[type]], bool] | None = None,
        outbound_id: int | None = None,
        name: str | None = None,
    ) -> Callable[[Action], Action]:
        """
        Decorator registering the decorated function as a rule action.

        Exactly one of `inbound_types` (a fixed signature) or `is_applicable`
        (a custom predicate) must be given.
        """
        if (inbound_types is None) == (is_applicable is None):
            raise ValueError("Give exactly one of inbound_types or is_applicable")
        predicate = is_applicable or fixed_inbound_types(*inbound_types)

        def decorator(action: Action) -> Action:
            self.register(
                Rule(
                    name=name or action.__name__,
                    node_kind=node_kind,
                    kind=kind,
                    is_applicable=predicate,
                    outbound_type=outbound_type,
                    action=action,
                    outbound_id=outbound_id,
                )
            )
            return action

        return decorator

    def sum_product_rule(self, node_kind: str, **kwargs) -> Callable[[Action], Action]:
        return self.rule(node_kind, kind=RuleKind.SUM_PRODUCT, **kwargs)

    def expectation_rule(self, node_kind: str, **kwargs) -> Callable[[Action], Action]:
        return self.rule(node_kind, kind=RuleKind.EXPECTATION, **kwargs)

    def candidates(self, node_kind: str, kind: RuleKind, outbound_id: int) -> List[Rule]:
        """Return the rules registered for a node kind, rule kind and outbound position."""
        return [r for r in self._rules if r.applies_to(node_kind, kind, outbound_id)]

    def resolve(
        self,
        node,
        outbound_id: int,
        kind: RuleKind,
        inbound_types: Sequence[type],
        outbound_type: type | None = None,
    ) -> Tuple[Rule, type]:
        """
        Find the single rule accepting `inbound_types` and derive the outbound type.

        Args:
            node: Node owning the entry
            outbound_id: Outbound interface id of the entry
            kind: Rule kind chosen by the resolver
            inbound_types: Inferred inbound type vector
            outbound_type: Fixed outbound type; when given, only rules whose
                outbound type is compatible with it are considered. A fixed
                type wider than the rule's type resolves to the rule's type

        Returns:
            (rule, outbound type)

        Raises:
            TypeInferenceError: If no rule or more than one rule matches, or
                the resolved type is not a distribution type that can be
                allocated as a message
        """
        inbound_types = tuple(inbound_types)
        signature = ", ".join(type_name(t) for t in inbound_types)
        if outbound_type is not None and not _is_distribution_type(outbound_type):
            raise TypeInferenceError(
                f"Fixed outbound type {type_name(outbound_type)} for node '{node.id}' "
                f"({node.kind}), outbound interface {outbound_id} is not a distribution type",
                node=node,
                rule_kind=kind,
                inbound_types=inbound_types,
            )

        found = []
        for rule in self.candidates(node.kind, kind, outbound_id):
            if not rule.is_applicable(inbound_types):
                continue
            rule_type = rule.resolve_outbound_type(node, inbound_types)
            if outbound_type is None or matches(rule_type, outbound_type):
                # A wider fixed type keeps the concrete type the rule produces
                found.append((rule, rule_type))
            elif matches(outbound_type, rule_type):
                found.append((rule, outbound_type))

        if not found:
            fixed = f" producing {type_name(outbound_type)}" if outbound_type else ""
            raise TypeInferenceError(
                f"No {kind.name} rule{fixed} for node '{node.id}' ({node.kind}), "
                f"outbound interface {outbound_id}, inbound types ({signature})",
                node=node,
                rule_kind=kind,
                inbound_types=inbound_types,
            )
        if len(found) > 1:
            names = ", ".join(r.name for r, _ in found)
            raise TypeInferenceError(
                f"Ambiguous {kind.name} rules [{names}] for node '{node.id}' ({node.kind}), "
                f"outbound interface {outbound_id}, inbound types ({signature})",
                node=node,
                rule_kind=kind,
                inbound_types=inbound_types,
            )

        rule, resolved = found[0]
        if not _is_distribution_type(resolved) or not _can_allocate(resolved):
            raise TypeInferenceError(
                f"{rule.name} on node '{node.id}' ({node.kind}), outbound interface "
                f"{outbound_id} produces {type_name(resolved)}, which cannot be allocated "
                "as a message",
                node=node,
                rule_kind=kind,
                inbound_types=inbound_types,
            )
        return rule, resolved

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)


def default_catalog() -> RuleCatalog:
    """Return a fresh catalog holding the built-in node rules."""
    from .library import register_builtin_rules

    catalog = RuleCatalog()
    register_builtin_rules(catalog)
    return catalog
