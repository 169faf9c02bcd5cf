"""
Tests for the YAML model compiler.
"""

import os

import pytest

from ep_core.algorithm import ExpectationPropagation
from ep_core.compiler import compile_from_dict, compile_from_file, compile_from_yaml
from ep_core.errors import ConfigurationError
from ep_core.messages import Delta, GaussianMeanVariance, GaussianWeightedMeanPrecision

from .conftest import SCRIPTS_DIR

SINGLE_SITE = """
nodes:
  - id: x
    kind: prior
    prior: {type: GaussianMeanVariance, m: 0.0, v: 1.0}
  - id: eq
    kind: equality
  - id: lik
    kind: probit
  - id: y
    kind: prior
    prior: {type: Delta, m: 0.0}
  - id: sink
    kind: terminal
edges:
  - [x.out, eq.1]
  - [eq.2, sink.in]
  - [eq.3, lik.real]
  - [lik.bin, y.out]
sites:
  - interface: lik.real
algorithm:
  n_iterations: 5
"""


class TestCompile:
    def test_compiles_graph_sites_and_settings(self):
        model = compile_from_yaml(SINGLE_SITE)
        assert list(model.graph.nodes) == ["x", "eq", "lik", "y", "sink"]
        assert model.graph.nodes["x"].params["prior"] == GaussianMeanVariance(0.0, 1.0)
        assert model.graph.nodes["y"].params["prior"] == Delta(0.0)
        (site, recognition), = model.sites
        assert site.label == "lik.real"
        assert recognition is GaussianWeightedMeanPrecision
        assert model.outputs is None
        assert model.config.n_iterations == 5

    def test_build_and_execute(self):
        algo = compile_from_yaml(SINGLE_SITE).build()
        assert isinstance(algo, ExpectationPropagation)
        assert [i.label for i in algo.post_convergence_schedule.interfaces()] == ["eq.2"]
        algo.execute()
        assert algo.stats["iterations_run"] == 5
        # y = 0 pulls the posterior below zero
        assert algo.graph.interface("eq.2").message.payload.mean() < 0.0

    def test_build_keyword_overrides(self):
        algo = compile_from_yaml(SINGLE_SITE).build(n_iterations=2)
        assert algo.n_iterations == 2

    def test_explicit_outputs_and_message_types(self):
        default = compile_from_yaml(SINGLE_SITE)
        text = SINGLE_SITE + "outputs: [eq.2]\nmessage_types:\n  eq.3: GaussianWeightedMeanPrecision\n"
        model = compile_from_yaml(text)
        assert [i.label for i in model.outputs] == ["eq.2"]
        assert list(model.message_types.values()) == [GaussianWeightedMeanPrecision]
        algo = model.build()
        assert len(algo.post_convergence_schedule) == len(default.build().post_convergence_schedule)

    def test_bundled_model_file(self):
        model = compile_from_file(os.path.join(SCRIPTS_DIR, "probit.yaml"))
        assert len(model.sites) == 2
        assert model.config.n_iterations == 50
        assert model.graph.validate() == {}

    def test_empty_document(self):
        model = compile_from_yaml("")
        assert model.graph.nodes == {}
        assert model.sites == []


class TestCompileErrors:
    def test_node_without_kind(self):
        with pytest.raises(ConfigurationError, match="id and a kind"):
            compile_from_dict({"nodes": [{"id": "x"}]})

    def test_prior_without_distribution(self):
        with pytest.raises(ConfigurationError, match="needs a 'prior'"):
            compile_from_dict({"nodes": [{"id": "x", "kind": "prior"}]})

    def test_unknown_distribution(self):
        with pytest.raises(ConfigurationError, match="Unknown distribution"):
            compile_from_dict({"nodes": [{"id": "x", "kind": "prior", "prior": {"type": "Gamma"}}]})

    def test_malformed_edge(self):
        with pytest.raises(ConfigurationError, match="pairs"):
            compile_from_dict({"nodes": [{"id": "s", "kind": "terminal"}], "edges": [["s.in"]]})

    def test_unknown_interface_reference(self):
        spec = {"nodes": [{"id": "s", "kind": "terminal"}], "edges": [["s.in", "t.in"]]}
        with pytest.raises(ConfigurationError, match="Unknown interface"):
            compile_from_dict(spec)

    def test_site_without_interface(self):
        with pytest.raises(ConfigurationError, match="'interface'"):
            compile_from_dict({"sites": [{"recognition": "Delta"}]})

    def test_unknown_algorithm_setting(self):
        with pytest.raises(ConfigurationError, match="Unknown algorithm settings"):
            compile_from_dict({"algorithm": {"max_iters": 3}})

    def test_invalid_iteration_bound(self):
        with pytest.raises(ConfigurationError, match="n_iterations"):
            compile_from_dict({"algorithm": {"n_iterations": 0}})

    @pytest.mark.parametrize("degree", ["three", 2.5, 0, True])
    def test_invalid_degree(self, degree):
        spec = {"nodes": [{"id": "eq", "kind": "equality", "degree": degree}]}
        with pytest.raises(ConfigurationError, match="degree must be a positive integer"):
            compile_from_dict(spec)

    def test_yaml_syntax_error(self):
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            compile_from_yaml("nodes: [\n  - id: x\n")

    def test_document_must_be_a_mapping(self):
        with pytest.raises(ConfigurationError, match="mapping"):
            compile_from_yaml("- just\n- a list\n")
