"""Path narration backed by a text generation model."""

from intel_graph.reasoning.generator import LocalTextGenerator, TextGenerator
from intel_graph.reasoning.explainer import (
    FALLBACK_EXPLANATION,
    PathExplainer,
    PathExplanation,
    build_path_prompt,
    parse_explanation,
)

__all__ = [
    "LocalTextGenerator",
    "TextGenerator",
    "FALLBACK_EXPLANATION",
    "PathExplainer",
    "PathExplanation",
    "build_path_prompt",
    "parse_explanation",
]
