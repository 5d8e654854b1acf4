"""
Pydantic settings models for the Intelligence Graph service.

Every subsystem reads its knobs from one of the sections below. Defaults
target a single-process deployment backed by a local SQLite file.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator


def _to_optional_path(v: str | Path | None) -> Path | None:
    if v is None:
        return None
    return Path(v) if isinstance(v, str) else v


class StorageSettings(BaseModel):
    """SQLite storage configuration."""

    database_path: Path = Field(
        default=Path("data/intel_graph.db"),
        description="Path to SQLite database file",
    )
    wal_mode: bool = Field(
        default=True,
        description="Enable WAL mode so snapshot workers can read during writes",
    )
    cache_size_mb: int = Field(
        default=64,
        ge=8,
        le=512,
        description="SQLite cache size in megabytes",
    )
    busy_timeout_ms: int = Field(
        default=5000,
        ge=0,
        le=60000,
        description="How long a writer waits on a locked database",
    )

    @field_validator("database_path", mode="before")
    @classmethod
    def convert_to_path(cls, v: str | Path) -> Path:
        """Convert string paths to Path objects."""
        return Path(v) if isinstance(v, str) else v


class EmbeddingSettings(BaseModel):
    """Sentence embeddings configuration."""

    model_name: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        description="HuggingFace sentence-transformer model identifier",
    )
    provider_name: str = Field(
        default="sentence-transformers",
        description="Provider label stored on every embedding record",
    )
    device: Literal["cpu", "cuda", "mps"] = Field(
        default="cpu",
        description="Device to run embedding model on",
    )
    normalize_embeddings: bool = Field(
        default=True,
        description="Whether to L2-normalize embeddings",
    )
    cache_dir: Path | None = Field(
        default=None,
        description="Directory to cache downloaded models",
    )

    @field_validator("cache_dir", mode="before")
    @classmethod
    def convert_cache_dir(cls, v: str | Path | None) -> Path | None:
        """Convert string paths to Path objects."""
        return _to_optional_path(v)


class ReasoningSettings(BaseModel):
    """Local text generation used to narrate graph paths."""

    enabled: bool = Field(
        default=True,
        description="Whether path explanations call the text generator",
    )
    model_name: str = Field(
        default="Qwen/Qwen2.5-1.5B-Instruct",
        description="HuggingFace model identifier",
    )
    device: Literal["cpu", "cuda", "mps"] = Field(
        default="cpu",
        description="Device to run inference on",
    )
    torch_dtype: Literal["float32", "float16", "bfloat16"] = Field(
        default="float32",
        description="PyTorch dtype for model weights",
    )
    max_new_tokens: int = Field(
        default=512,
        ge=64,
        le=2048,
        description="Maximum tokens to generate per explanation",
    )
    temperature: float = Field(
        default=0.3,
        ge=0.0,
        le=2.0,
        description="Sampling temperature (lower = more deterministic)",
    )
    do_sample: bool = Field(
        default=False,
        description="Whether to use sampling (False = greedy decoding)",
    )
    trust_remote_code: bool = Field(
        default=False,
        description="Whether to trust remote code in model repository",
    )
    cache_dir: Path | None = Field(
        default=None,
        description="Directory to cache downloaded models",
    )

    @field_validator("cache_dir", mode="before")
    @classmethod
    def convert_cache_dir(cls, v: str | Path | None) -> Path | None:
        """Convert string paths to Path objects."""
        return _to_optional_path(v)


class TraversalSettings(BaseModel):
    """Bounds applied to traversal and path search."""

    default_max_depth: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Depth used when a traversal request does not give one",
    )
    default_limit: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Visited-node cap used when a traversal request does not give one",
    )
    shortest_path_max_depth: int = Field(
        default=6,
        ge=1,
        le=10,
        description="Hop cap for shortest path search",
    )
    timeout_seconds: float | None = Field(
        default=30.0,
        gt=0.0,
        le=600.0,
        description="Wall-clock budget for one traversal. None disables it.",
    )


class SnapshotSettings(BaseModel):
    """Background snapshot generation."""

    max_workers: int = Field(
        default=2,
        ge=1,
        le=16,
        description="Worker threads used for snapshot generation",
    )
    compute_diff_by_default: bool = Field(
        default=True,
        description="Diff against the previous complete snapshot unless told otherwise",
    )


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum logging level",
    )
    format: str = Field(
        default="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        description="Log message format string",
    )
    date_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="Date format for log timestamps",
    )
    file_path: Path | None = Field(
        default=None,
        description="Path to log file. None means console only.",
    )
    max_file_size_mb: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum log file size before rotation",
    )
    backup_count: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Number of backup log files to keep",
    )
    log_to_console: bool = Field(
        default=True,
        description="Whether to output logs to console",
    )

    @field_validator("file_path", mode="before")
    @classmethod
    def convert_file_path(cls, v: str | Path | None) -> Path | None:
        """Convert string paths to Path objects."""
        return _to_optional_path(v)


class Settings(BaseModel):
    """
    Root configuration model containing all subsystem settings.

    Settings are loaded from YAML with environment variable overrides.
    """

    storage: StorageSettings = Field(
        default_factory=StorageSettings,
        description="Database storage settings",
    )
    embedding: EmbeddingSettings = Field(
        default_factory=EmbeddingSettings,
        description="Embedding model settings",
    )
    reasoning: ReasoningSettings = Field(
        default_factory=ReasoningSettings,
        description="Path explanation model settings",
    )
    traversal: TraversalSettings = Field(
        default_factory=TraversalSettings,
        description="Traversal bounds",
    )
    snapshots: SnapshotSettings = Field(
        default_factory=SnapshotSettings,
        description="Snapshot worker settings",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration",
    )

    model_config = {
        "extra": "forbid",
        "validate_default": True,
    }
