"""Call context — the tenant-scoped input bundle for one agent invocation."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StageRef(BaseModel):
    """A pipeline stage visible on the current board."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class CallContext(BaseModel):
    """Immutable, tenant-scoped context for a single agent run.

    Constructed once per request by the caller layer after identity and
    tenant resolution. ``tenant_id`` is the only scoping key handed to tool
    executors; every other field is optional display or metric data.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    tenant_id: str = Field(description="Tenant (organization) id; sole scoping key")
    user_id: str | None = None
    user_name: str | None = None

    board_id: str | None = None
    board_name: str | None = None
    deal_id: str | None = None
    contact_id: str | None = None
    stages: tuple[StageRef, ...] = ()

    deal_count: int | None = Field(default=None, ge=0)
    pipeline_value: float | None = Field(default=None, ge=0)
    stagnant_deals: int | None = Field(default=None, ge=0)
    overdue_deals: int | None = Field(default=None, ge=0)
    won_stage: str | None = None
    lost_stage: str | None = None

    business_type: str | None = Field(
        default=None,
        description="Vertical configured for the tenant (e.g. 'real_estate')",
    )

    @field_validator("tenant_id")
    @classmethod
    def _tenant_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("tenant_id must not be empty")
        return value
