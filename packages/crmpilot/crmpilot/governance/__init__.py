"""crmpilot governance — quota hooks consulted before model calls."""

from crmpilot.governance.quota import QuotaDecision, QuotaGuard, QuotaStatus, TokenQuotaGuard

__all__ = ["QuotaDecision", "QuotaGuard", "QuotaStatus", "TokenQuotaGuard"]
