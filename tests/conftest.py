"""
Shared pytest fixtures for Intelligence Graph tests.

Provides reusable fixtures for:
- Configuration and settings
- Database instances and request contexts
- Deterministic stand-ins for the embedding and text models
- A fully wired service with inline snapshot generation
"""

import hashlib
import json
import re
import tempfile
from pathlib import Path
from typing import Generator

import numpy as np
import pytest

from intel_graph.config import Settings, reset_settings
from intel_graph.core.context import GraphContext
from intel_graph.embeddings import EmbeddingVector
from intel_graph.service import IntelligenceGraph
from intel_graph.snapshots import InlineTaskRunner
from intel_graph.storage import Database
from intel_graph.utils.logging import reset_logging
from intel_graph.utils.metrics import Metrics

EMBEDDING_DIMENSIONS = 64


@pytest.fixture(autouse=True)
def reset_global_state():
    """
    Reset process-wide state before and after each test.

    Cached settings, logging handlers and metric counters would otherwise
    leak between tests.
    """
    reset_settings()
    reset_logging()
    Metrics.reset()
    yield
    reset_settings()
    reset_logging()
    Metrics.reset()


class FakeEmbeddingProvider:
    """
    Bag-of-words hashing embedder.

    Texts sharing words get similar vectors, identical texts get
    identical ones, and every call is counted.
    """

    name = "fake-embedder"

    def __init__(self, dimensions: int = EMBEDDING_DIMENSIONS, fail_on: str | None = None) -> None:
        self.dimensions = dimensions
        self.fail_on = fail_on
        self.calls: list[str] = []

    def embed(self, text: str) -> EmbeddingVector:
        self.calls.append(text)
        if self.fail_on and self.fail_on in text:
            raise RuntimeError("embedding backend unavailable")

        values = np.zeros(self.dimensions, dtype=np.float32)
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            digest = hashlib.md5(word.encode("utf-8")).digest()
            values[int.from_bytes(digest[:4], "little") % self.dimensions] += 1.0
        norm = np.linalg.norm(values)
        if norm > 0:
            values /= norm
        return EmbeddingVector(values=values, model_version="fake-1")


class FakeTextGenerator:
    """Returns a canned reply (or raises) and keeps the prompts it was given."""

    def __init__(self, reply: str | None = None, error: Exception | None = None) -> None:
        self.reply = reply if reply is not None else json.dumps({
            "explanation": "Acme influences Globex through a shared supplier.",
            "reasoning": ["Acme supplies Initech", "Initech competes with Globex"],
            "confidence": 0.8,
            "keyRelationships": [
                {"fromLabel": "Acme", "toLabel": "Initech", "relationship": "related_to"},
            ],
        })
        self.error = error
        self.prompts: list[str] = []

    def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that's cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_settings(temp_dir: Path) -> Settings:
    """
    Provide test settings with a temporary database path.

    Reasoning is off and console logging is silenced.
    """
    return Settings(
        storage={"database_path": str(temp_dir / "test.db")},
        reasoning={"enabled": False},
        snapshots={"max_workers": 1},
        logging={"log_to_console": False},
    )


@pytest.fixture
def database(test_settings: Settings) -> Generator[Database, None, None]:
    """Provide a fresh database with the schema applied."""
    db = Database.from_settings(test_settings)
    yield db
    db.close()


@pytest.fixture
def ctx() -> GraphContext:
    """Request context for the primary test tenant."""
    return GraphContext(tenant_id="tenant-a", actor_id="analyst-1")


@pytest.fixture
def other_ctx() -> GraphContext:
    """Request context for a second tenant."""
    return GraphContext(tenant_id="tenant-b", actor_id="analyst-2")


@pytest.fixture
def embedder() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def generator() -> FakeTextGenerator:
    return FakeTextGenerator()


@pytest.fixture
def graph(
    test_settings: Settings,
    database: Database,
    embedder: FakeEmbeddingProvider,
    generator: FakeTextGenerator,
) -> Generator[IntelligenceGraph, None, None]:
    """
    Provide a service wired to the fakes.

    Snapshots are generated inline so they are finished when
    create_snapshot returns.
    """
    settings = test_settings.model_copy(
        update={"reasoning": test_settings.reasoning.model_copy(update={"enabled": True})}
    )
    service = IntelligenceGraph.from_settings(
        settings,
        database=database,
        embedding_provider=embedder,
        text_generator=generator,
        task_runner=InlineTaskRunner(),
    )
    yield service
    service.close()


@pytest.fixture
def chain(graph: IntelligenceGraph, ctx: GraphContext) -> dict:
    """
    A small graph: Acme -> Initech -> Globex plus an unconnected Umbrella.

    Returns the created nodes and edges by short name.
    """
    acme = graph.create_node(ctx, {
        "node_type": "organization",
        "label": "Acme",
        "description": "Industrial conglomerate",
        "tags": ["customer", "enterprise"],
        "properties": {"region": "EU", "employees": 1200},
    })
    initech = graph.create_node(ctx, {
        "node_type": "competitor",
        "label": "Initech",
        "description": "Software vendor",
        "tags": ["vendor"],
        "properties": {"region": "US", "employees": 300},
    })
    globex = graph.create_node(ctx, {
        "node_type": "competitor",
        "label": "Globex",
        "tags": ["vendor", "enterprise"],
        "properties": {"region": "EU"},
    })
    umbrella = graph.create_node(ctx, {
        "node_type": "risk_factor",
        "label": "Umbrella",
    })
    ab = graph.create_edge(ctx, {
        "source_node_id": acme.id,
        "target_node_id": initech.id,
        "edge_type": "related_to",
        "weight": 2.0,
    })
    bc = graph.create_edge(ctx, {
        "source_node_id": initech.id,
        "target_node_id": globex.id,
        "edge_type": "contrasts_with",
        "weight": 0.5,
    })
    return {
        "acme": acme,
        "initech": initech,
        "globex": globex,
        "umbrella": umbrella,
        "ab": ab,
        "bc": bc,
    }
