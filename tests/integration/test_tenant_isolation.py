"""Integration: two tenants sharing one registry and store never see each other's data."""

from __future__ import annotations

import asyncio

from crmpilot.lm.agent_runner import AgentRunner
from crmpilot.schemas.context import CallContext
from crmpilot.schemas.run import FinishReason
from crmpilot.tools.crm import build_crm_registry
from tests.conftest import (
    TENANT_A,
    TENANT_B,
    InMemoryCRMStore,
    MockLMProvider,
    seed_store,
    tool_response,
)


class TestTenantIsolation:
    async def test_same_query_different_tenants(self) -> None:
        crm = InMemoryCRMStore()
        seed_store(crm, TENANT_A)
        crm.add_deal(TENANT_B, id="deal-b", title="Acme Brasil", value=7)
        registry = build_crm_registry(crm)

        def runner() -> AgentRunner:
            return AgentRunner(
                [MockLMProvider([tool_response(("searchDeals", {"query": "acme"})), "ok"])],
                registry,
            )

        result_a, result_b = await asyncio.gather(
            runner().run([{"role": "user", "content": "acme?"}], CallContext(tenant_id=TENANT_A)),
            runner().run([{"role": "user", "content": "acme?"}], CallContext(tenant_id=TENANT_B)),
        )

        deals_a = result_a.steps[0].tool_invocations[0].result["deals"]
        deals_b = result_b.steps[0].tool_invocations[0].result["deals"]
        assert [d["id"] for d in deals_a] == ["deal-acme"]
        assert [d["id"] for d in deals_b] == ["deal-b"]

    async def test_model_cannot_pick_tenant(self) -> None:
        crm = InMemoryCRMStore()
        seed_store(crm, TENANT_A)
        registry = build_crm_registry(crm)
        provider = MockLMProvider(
            [
                tool_response(("getDealDetails", {"deal_id": "deal-acme", "tenant_id": TENANT_A})),
                "ok",
            ]
        )

        result = await AgentRunner([provider], registry).run(
            [{"role": "user", "content": "show acme"}], CallContext(tenant_id=TENANT_B)
        )

        assert result.finish_reason == FinishReason.STOP_CONDITION_REACHED
        invocation = result.steps[0].tool_invocations[0]
        assert invocation.error == "Deal not found."
        assert {tenant for _, tenant in crm.calls} == {TENANT_B}
        for schema in registry.tool_schemas():
            assert "tenant_id" not in schema["function"]["parameters"].get("properties", {})
