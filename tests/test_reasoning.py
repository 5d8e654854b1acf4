"""
Tests for path explanations.

The text generator is always a fake; no model is loaded.
"""

import json

import pytest

from intel_graph.core.context import GraphContext
from intel_graph.core.exceptions import ReasoningError
from intel_graph.reasoning import generator as generator_module
from intel_graph.reasoning.explainer import (
    FALLBACK_EXPLANATION,
    build_path_prompt,
    parse_explanation,
)
from intel_graph.reasoning.generator import LocalTextGenerator
from intel_graph.service import IntelligenceGraph
from intel_graph.storage import GraphEventType

from tests.conftest import FakeTextGenerator


def explain(graph: IntelligenceGraph, ctx: GraphContext, chain: dict, **extra):
    return graph.explain_path(ctx, {
        "start_node_id": chain["acme"].id,
        "end_node_id": chain["globex"].id,
        **extra,
    })


class TestParseExplanation:
    """Tests for parse_explanation."""

    def test_plain_json(self):
        """A bare object should parse."""
        assert parse_explanation('{"explanation": "x"}') == {"explanation": "x"}

    def test_wrapped_in_prose(self):
        """Text around the object should be ignored."""
        reply = 'Sure, here it is:\n```json\n{"confidence": 0.4}\n```\nHope that helps.'

        assert parse_explanation(reply) == {"confidence": 0.4}

    @pytest.mark.parametrize("reply", ["no json here", "} backwards {", "{not valid}"])
    def test_unreadable(self, reply):
        """Replies without a readable object should raise ValueError."""
        with pytest.raises(ValueError):
            parse_explanation(reply)


class TestBuildPathPrompt:
    """Tests for the prompt sent to the generator."""

    def test_prompt_describes_path(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """The prompt should spell out the chain, the nodes and the edges."""
        path = graph.find_shortest_path(ctx, {
            "start_node_id": chain["acme"].id,
            "end_node_id": chain["globex"].id,
        })

        prompt = build_path_prompt(path)

        assert (
            "Acme (organization) --[related_to]--> Initech (competitor)"
            " --[contrasts_with]--> Globex (competitor)"
        ) in prompt
        assert "- Acme: Industrial conglomerate" in prompt
        assert "- Globex: No description" in prompt
        assert "- related_to: No description, weight: 2.0" in prompt


class TestExplainPath:
    """Tests for explain_path."""

    def test_explanation(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict, generator):
        """A well-formed reply should be mapped onto the result."""
        result = explain(graph, ctx, chain)

        assert result.path.length == 2
        assert result.explanation.startswith("Acme influences Globex")
        assert result.reasoning == ["Acme supplies Initech", "Initech competes with Globex"]
        assert result.confidence == pytest.approx(0.8)
        assert result.key_relationships[0]["toLabel"] == "Initech"
        assert len(generator.prompts) == 1

    def test_no_path(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict, generator):
        """Unconnected nodes should give None without calling the generator."""
        result = graph.explain_path(ctx, {
            "start_node_id": chain["acme"].id,
            "end_node_id": chain["umbrella"].id,
        })

        assert result is None
        assert generator.prompts == []

    def test_reasoning_not_requested(self, graph: IntelligenceGraph, ctx: GraphContext,
                                     chain: dict, generator):
        """include_reasoning=False should return the bare path."""
        result = explain(graph, ctx, chain, include_reasoning=False)

        assert result.path.length == 2
        assert result.explanation == ""
        assert result.confidence == 0.0
        assert generator.prompts == []

    def test_reasoning_disabled(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict, generator):
        """A disabled explainer should never call the generator."""
        graph.explainer.enabled = False

        result = explain(graph, ctx, chain)

        assert result.explanation == ""
        assert generator.prompts == []

    def test_generator_failure_falls_back(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """A generator error should give the fallback, not raise."""
        graph.explainer.generator = FakeTextGenerator(error=ReasoningError("model offline"))

        result = explain(graph, ctx, chain)

        assert result.explanation == FALLBACK_EXPLANATION
        assert result.confidence == 0.0
        assert result.reasoning == []
        assert result.path.length == 2

    def test_bad_reply_falls_back(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """An unparseable reply should give the fallback."""
        graph.explainer.generator = FakeTextGenerator(reply="I cannot answer that.")

        result = explain(graph, ctx, chain)

        assert result.explanation == FALLBACK_EXPLANATION

    def test_confidence_clamped(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Out-of-range or non-numeric confidence should be coerced."""
        graph.explainer.generator = FakeTextGenerator(reply=json.dumps({"confidence": 7}))
        assert explain(graph, ctx, chain).confidence == 1.0

        graph.explainer.generator = FakeTextGenerator(reply=json.dumps({"confidence": "high"}))
        assert explain(graph, ctx, chain).confidence == 0.0

    def test_success_audited(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Only successful explanations should be audited."""
        graph.explainer.generator = FakeTextGenerator(reply="nonsense")
        explain(graph, ctx, chain)
        graph.explainer.generator = FakeTextGenerator()
        explain(graph, ctx, chain)

        entries, _ = graph.list_audit_logs(ctx, event_type=GraphEventType.REASONING_EXECUTED)

        assert len(entries) == 1
        assert entries[0].node_id == chain["acme"].id
        assert entries[0].metadata == {"end_node_id": chain["globex"].id, "path_length": 2}

    def test_to_dict(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """The serialized result should nest the path."""
        data = explain(graph, ctx, chain).to_dict()

        assert data["confidence"] == pytest.approx(0.8)
        assert len(data["path"]["nodes"]) == 3


class TestLocalTextGenerator:
    """Tests for the transformers wrapper that do not load a model."""

    def test_lazy(self, test_settings):
        """Construction should not load anything."""
        generator = LocalTextGenerator.from_settings(test_settings)

        assert not generator.is_loaded
        assert "not loaded" in repr(generator)

    def test_load_failure(self, monkeypatch):
        """A loading error should surface as ReasoningError."""
        class BrokenTokenizer:
            @classmethod
            def from_pretrained(cls, *args, **kwargs):
                raise OSError("model not found")

        monkeypatch.setattr(generator_module, "AutoTokenizer", BrokenTokenizer)
        generator = LocalTextGenerator(model_name="missing/model")

        with pytest.raises(ReasoningError):
            generator.complete("hello")
        assert not generator.is_loaded
