"""
Unit tests for rule resolution and static message type inference.
"""

import pytest

from ep_core.algorithm import ExpectationPropagation
from ep_core.enums import RuleKind
from ep_core.errors import SchedulingError, TypeInferenceError
from ep_core.inference import check_type_consistency, collect_inbound_types, infer_types
from ep_core.messages import (
    Absent,
    Delta,
    Distribution,
    Gaussian,
    GaussianMeanVariance,
    GaussianWeightedMeanPrecision,
)
from ep_core.rules import RuleCatalog, default_catalog, fixed_inbound_types, resolve_rule_kind
from ep_core.schedule import build_ep_schedule, to_schedule


def chain_entries(chain):
    site = chain.interface("C.1")
    iterative, post = build_ep_schedule([site], [chain.interface("B.1")])
    return to_schedule(iterative + post, [site]), {site: GaussianWeightedMeanPrecision}


class TestRuleResolution:
    def test_rule_kind_defaults_to_sum_product(self, chain):
        site = chain.interface("C.1")
        assert resolve_rule_kind(chain.interface("B.2"), {site}) == RuleKind.SUM_PRODUCT
        assert resolve_rule_kind(site, {site}) == RuleKind.EXPECTATION

    def test_fixed_inbound_types_predicate(self):
        predicate = fixed_inbound_types(Gaussian, Absent)
        assert predicate((GaussianMeanVariance, Absent))
        assert predicate((GaussianWeightedMeanPrecision, Absent))
        assert not predicate((Absent, GaussianMeanVariance))
        assert not predicate((GaussianMeanVariance,))
        assert not predicate((Delta, Absent))

    def test_rules_are_filtered_by_outbound_position(self):
        catalog = default_catalog()
        forward = catalog.candidates("addition", RuleKind.SUM_PRODUCT, 3)
        backward = catalog.candidates("addition", RuleKind.SUM_PRODUCT, 1)
        assert [r.name for r in forward] == ["SPAdditionOutGG"]
        assert [r.name for r in backward] == ["SPAdditionIn1GG"]
        assert catalog.candidates("addition", RuleKind.EXPECTATION, 3) == []

    def test_rule_requires_exactly_one_declaration_style(self):
        catalog = RuleCatalog()
        with pytest.raises(ValueError):
            catalog.sum_product_rule("x", outbound_type=Delta)
        with pytest.raises(ValueError):
            catalog.sum_product_rule(
                "x", outbound_type=Delta, inbound_types=(Absent,), is_applicable=lambda t: True
            )


class TestInferTypes:
    def test_chain_types(self, chain, toy_catalog):
        entries, recognition = chain_entries(chain)
        table = infer_types(entries, toy_catalog, recognition)

        a, b2, c, b1 = entries
        assert a.inbound_types == (Absent,)
        assert a.outbound_type is GaussianMeanVariance
        assert b2.inbound_types == (GaussianMeanVariance, Absent)
        # The expectation rule sees the cavity message on its own interface
        assert c.inbound_types == (GaussianMeanVariance,)
        assert c.outbound_type is GaussianWeightedMeanPrecision
        assert c.rule.name == "EPSiteNode"
        # Inbound from the site is typed by its recognition distribution
        assert b1.inbound_types == (Absent, GaussianWeightedMeanPrecision)
        assert table[chain.interface("B.1")] is GaussianMeanVariance

    def test_recognition_type_overrides_propagated_type(self, chain, toy_catalog):
        entries, _ = chain_entries(chain)
        infer_types(entries, toy_catalog, {chain.interface("C.1"): GaussianMeanVariance})
        assert entries[-1].inbound_types == (Absent, GaussianMeanVariance)

    def test_every_entry_has_an_accepting_rule(self, probit_graph, probit_sites):
        sites = [s for s, _ in probit_sites]
        iterative, post = build_ep_schedule(sites, probit_graph.interfaces_facing_sinks())
        entries = to_schedule(iterative + post, sites)
        infer_types(entries, default_catalog(), dict(probit_sites))
        for entry in entries:
            assert entry.rule.is_applicable(entry.inbound_types)
            assert entry.outbound_type is not None

    def test_message_type_override(self, chain, toy_catalog):
        entries, recognition = chain_entries(chain)
        b2 = chain.interface("B.2")
        infer_types(entries, toy_catalog, recognition, {b2: GaussianMeanVariance})
        assert entries[1].outbound_type is GaussianMeanVariance

    def test_incompatible_override_raises(self, chain, toy_catalog):
        entries, recognition = chain_entries(chain)
        with pytest.raises(TypeInferenceError, match="producing Delta"):
            infer_types(entries, toy_catalog, recognition, {chain.interface("B.2"): Delta})

    def test_missing_dependency_raises(self, chain, toy_catalog):
        site = chain.interface("C.1")
        entries = to_schedule([chain.interface("B.2"), site], [site])
        with pytest.raises(SchedulingError, match="before it is scheduled"):
            infer_types(entries, toy_catalog, {site: GaussianWeightedMeanPrecision})

    def test_no_matching_rule_names_node_and_types(self, chain):
        entries, recognition = chain_entries(chain)
        with pytest.raises(TypeInferenceError) as info:
            infer_types(entries, RuleCatalog(), recognition)
        err = info.value
        assert err.node is chain.nodes["A"]
        assert err.rule_kind == RuleKind.SUM_PRODUCT
        assert err.inbound_types == (Absent,)
        assert "'A'" in str(err) and "Absent" in str(err)

    def test_ambiguous_rules_raise(self, chain, toy_catalog):
        @toy_catalog.sum_product_rule("source", inbound_types=(Absent,), outbound_type=GaussianMeanVariance)
        def SPSourceAgain(node, outbound_id, inbounds):
            return GaussianMeanVariance()

        entries, recognition = chain_entries(chain)
        with pytest.raises(TypeInferenceError, match="Ambiguous"):
            infer_types(entries, toy_catalog, recognition)


class TestTypeConsistency:
    def test_inferred_schedule_is_consistent(self, chain, toy_catalog):
        entries, recognition = chain_entries(chain)
        infer_types(entries, toy_catalog, recognition)
        check_type_consistency(entries, toy_catalog, recognition)

    def test_changed_producer_type_is_detected(self, chain, toy_catalog):
        entries, recognition = chain_entries(chain)
        infer_types(entries, toy_catalog, recognition)
        entries[0].outbound_type = GaussianWeightedMeanPrecision
        with pytest.raises(TypeInferenceError, match="Stale inbound types"):
            check_type_consistency(entries, toy_catalog, recognition)

    def test_inbound_types_rejected_by_rule_are_detected(self, chain, toy_catalog):
        entries, recognition = chain_entries(chain)
        infer_types(entries, toy_catalog, recognition)
        entries[1].inbound_types = (Delta, Absent)
        entries[0].outbound_type = Delta
        with pytest.raises(TypeInferenceError, match="does not accept"):
            check_type_consistency(entries, toy_catalog, recognition)

    def test_collect_inbound_types_in_interface_order(self, probit_graph, probit_sites):
        sites = [s for s, _ in probit_sites]
        iterative, _ = build_ep_schedule(sites)
        entries = to_schedule(iterative, sites)
        infer_types(entries, default_catalog(), dict(probit_sites))
        table = {e.outbound_interface: e.outbound_type for e in entries}
        eq2_1 = next(e for e in entries if e.outbound_interface.label == "eq2.1")
        assert collect_inbound_types(eq2_1, table, dict(probit_sites)) == [
            Absent,
            GaussianWeightedMeanPrecision,
            GaussianWeightedMeanPrecision,
        ]


class TestMessageTypeOverrides:
    def test_wider_override_keeps_concrete_rule_type(self, probit_graph, probit_sites):
        eq2_2 = probit_graph.interface("eq2.2")
        algo = ExpectationPropagation.from_graph(
            probit_graph, probit_sites, message_types={eq2_2: Gaussian}, n_iterations=2
        )
        (entry,) = algo.post_convergence_schedule
        assert entry.outbound_type is GaussianWeightedMeanPrecision
        algo.execute()
        assert isinstance(eq2_2.message.payload, GaussianWeightedMeanPrecision)

    @pytest.mark.parametrize("override", [object, int, "GaussianMeanVariance"])
    def test_non_distribution_override_raises(self, probit_graph, probit_sites, override):
        eq2_2 = probit_graph.interface("eq2.2")
        with pytest.raises(TypeInferenceError, match="not a distribution type"):
            ExpectationPropagation.from_graph(
                probit_graph, probit_sites, message_types={eq2_2: override}
            )

    def test_override_with_base_distribution_resolves_to_rule_type(self, chain, toy_catalog):
        entries, recognition = chain_entries(chain)
        infer_types(entries, toy_catalog, recognition, {chain.interface("B.2"): Distribution})
        assert entries[1].outbound_type is GaussianMeanVariance

    def test_rule_with_abstract_outbound_type_raises(self, chain):
        catalog = RuleCatalog()

        @catalog.sum_product_rule("source", inbound_types=(Absent,), outbound_type=Gaussian)
        def SPSourceAbstract(node, outbound_id, inbounds):
            return GaussianMeanVariance()

        entries, recognition = chain_entries(chain)
        with pytest.raises(TypeInferenceError, match="cannot be allocated") as info:
            infer_types(entries, catalog, recognition)
        assert info.value.node is chain.nodes["A"]
