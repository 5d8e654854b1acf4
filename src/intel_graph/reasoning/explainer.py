"""
Narrative explanations for graph paths.

Finds the shortest path between two nodes and asks the text generator to
explain it. The generator is treated as unreliable: any failure to call
it or to parse its JSON reply produces a fixed low-confidence fallback
instead of an error.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Mapping

from intel_graph.audit import AuditLog
from intel_graph.core.context import GraphContext
from intel_graph.graph_store.inputs import ExplainPathRequest, parse_input
from intel_graph.graph_store.traversal import PathResult, TraversalEngine
from intel_graph.reasoning.generator import TextGenerator
from intel_graph.storage import GraphEventType
from intel_graph.utils.logging import get_logger

logger = get_logger(__name__)

FALLBACK_EXPLANATION = "Failed to generate explanation"

PROMPT_TEMPLATE = """Analyze this knowledge graph path and explain the relationship chain:

Path: {path}

Node details:
{nodes}

Edge details:
{edges}

Provide:
1. A clear narrative explanation of how these entities are connected
2. Key reasoning steps that explain the relationship chain
3. An assessment of the significance of each relationship
4. A confidence score (0-1) for the overall explanation

Format your response as JSON with the following structure:
{{
  "explanation": "narrative explanation",
  "reasoning": ["step 1", "step 2"],
  "confidence": 0.85,
  "keyRelationships": [
    {{"fromLabel": "A", "toLabel": "B", "relationship": "influences", "significance": "high impact"}}
  ]
}}"""


@dataclass
class PathExplanation:
    path: PathResult
    explanation: str = ""
    reasoning: list[str] = field(default_factory=list)
    confidence: float = 0.0
    key_relationships: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "path": self.path.to_dict(),
            "explanation": self.explanation,
            "reasoning": list(self.reasoning),
            "confidence": self.confidence,
            "key_relationships": list(self.key_relationships),
        }


def build_path_prompt(path: PathResult) -> str:
    chain = []
    for i, node in enumerate(path.nodes):
        chain.append(f"{node.label} ({node.node_type.value})")
        if i < len(path.edges):
            chain.append(f" --[{path.edges[i].edge_type.value}]--> ")

    return PROMPT_TEMPLATE.format(
        path="".join(chain),
        nodes="\n".join(
            f"- {node.label}: {node.description or 'No description'}" for node in path.nodes
        ),
        edges="\n".join(
            f"- {edge.edge_type.value}: {edge.description or 'No description'}, weight: {edge.weight}"
            for edge in path.edges
        ),
    )


def parse_explanation(text: str) -> dict[str, Any]:
    """
    Pull the JSON object out of a model reply.

    Models often wrap the object in prose or code fences, so everything
    outside the outermost braces is ignored.

    Raises:
        ValueError: If no JSON object can be read
    """
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("No JSON object in generator reply")
    data = json.loads(text[start:end + 1])
    if not isinstance(data, dict):
        raise ValueError("Generator reply is not a JSON object")
    return data


def _confidence(value: Any) -> float:
    try:
        return min(max(float(value or 0.0), 0.0), 1.0)
    except (TypeError, ValueError):
        return 0.0


class PathExplainer:
    """
    Shortest path plus a narrative from the text generator.

    Example:
        >>> explainer = PathExplainer(traversal, audit, LocalTextGenerator.from_settings(settings))
        >>> result = explainer.explain_path(ctx, {"start_node_id": a.id, "end_node_id": c.id})
        >>> result.explanation, result.confidence
    """

    def __init__(
        self,
        traversal: TraversalEngine,
        audit: AuditLog,
        generator: TextGenerator | None = None,
        enabled: bool = True,
    ) -> None:
        self.traversal = traversal
        self.audit = audit
        self.generator = generator
        self.enabled = enabled

    def explain_path(
        self,
        ctx: GraphContext,
        request: ExplainPathRequest | Mapping[str, Any],
    ) -> PathExplanation | None:
        """
        Returns:
            None when no path exists; otherwise the path with its
            explanation, which is empty when reasoning is off
        """
        request = parse_input(ExplainPathRequest, request)
        path = self.traversal.run_shortest_path(ctx, request)
        if path is None:
            return None

        if not request.include_reasoning or not self.enabled or self.generator is None:
            return PathExplanation(path=path)

        try:
            data = parse_explanation(self.generator.complete(build_path_prompt(path)))
        except Exception as e:
            logger.warning(f"Failed to generate path explanation: {e}")
            return PathExplanation(path=path, explanation=FALLBACK_EXPLANATION)

        self.audit.record(
            ctx,
            GraphEventType.REASONING_EXECUTED,
            node_id=request.start_node_id,
            metadata={"end_node_id": request.end_node_id, "path_length": path.length},
        )
        reasoning = data.get("reasoning") or []
        relationships = data.get("keyRelationships") or []
        return PathExplanation(
            path=path,
            explanation=str(data.get("explanation") or ""),
            reasoning=[str(step) for step in reasoning] if isinstance(reasoning, list) else [],
            confidence=_confidence(data.get("confidence")),
            key_relationships=[
                item for item in relationships if isinstance(item, dict)
            ] if isinstance(relationships, list) else [],
        )
