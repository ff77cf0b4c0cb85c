"""Quota governance — decide whether a tenant may spend more model tokens."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from crmpilot.schemas.context import CallContext

logger = logging.getLogger(__name__)


class QuotaDecision(BaseModel):
    """Outcome of a quota check."""

    allowed: bool
    reason: str | None = None


class QuotaStatus(BaseModel):
    """Current token usage of a tenant against its monthly limit."""

    monthly_limit_tokens: int = Field(ge=0)
    tokens_used_this_month: int = Field(ge=0, default=0)
    reset_day: int = Field(default=1, ge=1, le=28)

    @property
    def usage_pct(self) -> float:
        if self.monthly_limit_tokens == 0:
            return 0.0
        return round(self.tokens_used_this_month / self.monthly_limit_tokens * 100, 1)

    @property
    def exhausted(self) -> bool:
        return self.monthly_limit_tokens > 0 and (
            self.tokens_used_this_month >= self.monthly_limit_tokens
        )


class QuotaGuard(ABC):
    """Hook consulted before every model invocation."""

    @abstractmethod
    async def check(self, context: CallContext) -> QuotaDecision:
        """Return whether the tenant may make another model call."""

    async def record_usage(self, context: CallContext, tokens: int) -> None:
        """Account tokens consumed by a model call. Default: no accounting."""


class TokenQuotaGuard(QuotaGuard):
    """In-process monthly token quota per tenant.

    Tenants without a configured limit are unlimited.
    """

    def __init__(self, limits: dict[str, int] | None = None, *, reset_day: int = 1) -> None:
        self._limits = dict(limits or {})
        self._reset_day = reset_day
        self._used: dict[str, int] = {}
        self._lock = threading.Lock()

    def status(self, tenant_id: str) -> QuotaStatus | None:
        if tenant_id not in self._limits:
            return None
        with self._lock:
            used = self._used.get(tenant_id, 0)
        return QuotaStatus(
            monthly_limit_tokens=self._limits[tenant_id],
            tokens_used_this_month=used,
            reset_day=self._reset_day,
        )

    async def check(self, context: CallContext) -> QuotaDecision:
        status = self.status(context.tenant_id)
        if status is None or not status.exhausted:
            return QuotaDecision(allowed=True)
        return QuotaDecision(
            allowed=False,
            reason=(
                f"Monthly AI quota reached ({status.tokens_used_this_month:,}/"
                f"{status.monthly_limit_tokens:,} tokens). Resets on day {status.reset_day}."
            ),
        )

    async def record_usage(self, context: CallContext, tokens: int) -> None:
        with self._lock:
            self._used[context.tenant_id] = self._used.get(context.tenant_id, 0) + tokens

    def reset(self, tenant_id: str | None = None) -> None:
        """Reset usage counters for one tenant, or all of them."""
        with self._lock:
            if tenant_id is None:
                self._used.clear()
            else:
                self._used.pop(tenant_id, None)
