"""Request scope carried by every graph operation."""

from dataclasses import dataclass


@dataclass(frozen=True)
class GraphContext:
    """
    Tenant and actor for one call.

    The tenant id has already been authorized by the caller; every read
    and write is scoped to it. actor_id is recorded as created_by /
    updated_by and on audit entries.
    """

    tenant_id: str
    actor_id: str | None = None
    actor_type: str = "user"

    def __post_init__(self) -> None:
        if not self.tenant_id:
            raise ValueError("tenant_id must be a non-empty string")
