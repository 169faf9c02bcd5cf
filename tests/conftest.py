"""
Pytest configuration and shared fixtures.
"""

import os

import pytest

from ep_core.graph import FactorGraph, Node
from ep_core.library import make_node
from ep_core.messages import (
    Absent,
    Delta,
    Gaussian,
    GaussianMeanVariance,
    GaussianWeightedMeanPrecision,
)
from ep_core.rules import RuleCatalog

SCRIPTS_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "scripts")


def make_toy_catalog(calls):
    """
    Rules for the toy node kinds 'source', 'relay' and 'sitenode'.

    Every action appends the label of the interface it computes to `calls`.
    """
    catalog = RuleCatalog()

    @catalog.sum_product_rule("source", inbound_types=(Absent,), outbound_type=GaussianMeanVariance)
    def SPSource(node, outbound_id, inbounds):
        calls.append(f"{node.id}.{outbound_id}")
        return GaussianMeanVariance(1.0, 2.0)

    @catalog.sum_product_rule(
        "relay",
        is_applicable=lambda types: len(types) == 2
        and types.count(Absent) == 1
        and all(t is Absent or issubclass(t, Gaussian) for t in types),
        outbound_type=GaussianMeanVariance,
    )
    def SPRelay(node, outbound_id, inbounds):
        calls.append(f"{node.id}.{outbound_id}")
        (message,) = [m for m in inbounds if m is not None]
        return message.to_mean_variance()

    @catalog.expectation_rule(
        "sitenode", inbound_types=(Gaussian,), outbound_type=GaussianWeightedMeanPrecision
    )
    def EPSiteNode(node, outbound_id, inbounds):
        calls.append(f"{node.id}.{outbound_id}")
        if node.params.get("fail"):
            raise FloatingPointError("numerically invalid cavity")
        return inbounds[0].to_weighted_mean_precision()

    return catalog


@pytest.fixture
def calls():
    return []


@pytest.fixture
def toy_catalog(calls):
    return make_toy_catalog(calls)


@pytest.fixture
def chain():
    """Chain A -- B -- C; C's only interface is the site."""
    g = FactorGraph()
    a = g.add_node(Node.create("A", "source", ["1"]))
    b = g.add_node(Node.create("B", "relay", ["1", "2"]))
    c = g.add_node(Node.create("C", "sitenode", ["1"]))
    g.connect(a.interfaces[0], b.interfaces[0])
    g.connect(b.interfaces[1], c.interfaces[0])
    return g


@pytest.fixture
def probit_graph():
    """
    Latent x with a N(0, 1) prior observed through two probit likelihoods (y = 1, 1).

        x_prior -- eq1 -- eq2 -- sink
                    |      |
                   lik1   lik2
                    |      |
                   y1     y2
    """
    g = FactorGraph()
    g.add_node(make_node("x_prior", "prior", prior=GaussianMeanVariance(0.0, 1.0)))
    g.add_node(make_node("eq1", "equality"))
    g.add_node(make_node("eq2", "equality"))
    g.add_node(make_node("lik1", "probit"))
    g.add_node(make_node("lik2", "probit"))
    g.add_node(make_node("y1", "prior", prior=Delta(1.0)))
    g.add_node(make_node("y2", "prior", prior=Delta(1.0)))
    g.add_node(make_node("sink", "terminal"))
    g.connect("x_prior.out", "eq1.1")
    g.connect("eq1.2", "eq2.1")
    g.connect("eq2.2", "sink.in")
    g.connect("eq1.3", "lik1.real")
    g.connect("eq2.3", "lik2.real")
    g.connect("lik1.bin", "y1.out")
    g.connect("lik2.bin", "y2.out")
    return g


@pytest.fixture
def probit_sites(probit_graph):
    return [
        (probit_graph.interface("lik1.real"), GaussianWeightedMeanPrecision),
        (probit_graph.interface("lik2.real"), GaussianWeightedMeanPrecision),
    ]
