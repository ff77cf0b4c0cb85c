"""Shared test fixtures for crmpilot."""

from __future__ import annotations

import asyncio
import copy
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from crmpilot.core.identifiers import RunId, generate_id, generate_run_id
from crmpilot.lm.provider import BaseLMProvider, LMMessage, LMResponse, LMToolCall
from crmpilot.runtime.event_log import SQLiteEventLog
from crmpilot.runtime.run_store import InMemoryRunStore
from crmpilot.schemas.context import CallContext, StageRef
from crmpilot.schemas.events import BaseEvent, EventType
from crmpilot.tools.crm import build_crm_registry
from crmpilot.tools.registry import ToolRegistry
from crmpilot.tools.store import CRMStore

TENANT_A = "org-a"
TENANT_B = "org-b"
BOARD = "board-1"


# ── Response builders ──────────────────────────────────────────────


def text_response(text: str, tokens: int = 10) -> LMResponse:
    """A response with text only (no tool calls)."""
    return LMResponse(text=text, tokens_used=tokens, completion_tokens=tokens)


def tool_response(*calls: tuple[str, dict[str, Any]], text: str = "", tokens: int = 10) -> LMResponse:
    """A response emitting one tool call per ``(name, arguments)`` pair."""
    return LMResponse(
        text=text,
        tool_calls=[
            LMToolCall(id=f"call_{generate_id()[:8]}", name=name, arguments=args)
            for name, args in calls
        ],
        tokens_used=tokens,
    )


# ── MockLMProvider ─────────────────────────────────────────────────


class MockLMProvider(BaseLMProvider):
    """Deterministic mock LM provider with scripted responses.

    Items in ``responses`` may be LMResponse objects, plain strings (text
    responses) or exceptions (raised from ``invoke``). The last item is
    repeated once the script runs out.
    """

    def __init__(
        self,
        responses: list[LMResponse | str | Exception] | None = None,
        name: str = "mock",
        delay: float = 0.0,
    ) -> None:
        self._responses = list(responses) if responses else ["Hello"]
        self._name = name
        self._delay = delay
        self._call_count = 0
        self.calls: list[dict[str, Any]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_count(self) -> int:
        return self._call_count

    async def invoke(
        self,
        messages: list[LMMessage],
        *,
        instructions: str,
        tool_schemas: list[dict[str, Any]] | None = None,
    ) -> LMResponse:
        idx = min(self._call_count, len(self._responses) - 1)
        item = self._responses[idx]
        self._call_count += 1
        self.calls.append(
            {
                "messages": list(messages),
                "instructions": instructions,
                "tool_schemas": tool_schemas,
            }
        )
        if self._delay:
            await asyncio.sleep(self._delay)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, str):
            return text_response(item)
        return item


# ── In-memory CRM store ────────────────────────────────────────────


class InMemoryCRMStore(CRMStore):
    """Tenant-partitioned CRMStore used by tool and runner tests."""

    def __init__(self) -> None:
        self.deals: dict[str, dict[str, dict[str, Any]]] = {}
        self.contacts: dict[str, list[dict[str, Any]]] = {}
        self.stages: dict[str, dict[str, list[dict[str, Any]]]] = {}
        self.tasks: dict[str, list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, str]] = []

    # seeding helpers

    def add_stage(self, tenant_id: str, board_id: str, stage_id: str, name: str) -> None:
        stages = self.stages.setdefault(tenant_id, {}).setdefault(board_id, [])
        stages.append({"id": stage_id, "name": name, "order": len(stages)})

    def add_deal(self, tenant_id: str, **fields: Any) -> dict[str, Any]:
        deal = {
            "id": fields.pop("id", generate_id()),
            "title": "Deal",
            "value": 0,
            "board_id": BOARD,
            "stage_id": None,
            "is_won": False,
            "is_lost": False,
            "updated_at": datetime.now(UTC).isoformat(),
            **fields,
        }
        self.deals.setdefault(tenant_id, {})[deal["id"]] = deal
        return deal

    def add_contact(self, tenant_id: str, **fields: Any) -> dict[str, Any]:
        contact = {"id": fields.pop("id", generate_id()), **fields}
        self.contacts.setdefault(tenant_id, []).append(contact)
        return contact

    def _with_stage_name(self, tenant_id: str, deal: dict[str, Any]) -> dict[str, Any]:
        row = copy.deepcopy(deal)
        for stage in self.stages.get(tenant_id, {}).get(deal.get("board_id"), []):
            if stage["id"] == deal.get("stage_id"):
                row["stage_name"] = stage["name"]
        return row

    # CRMStore

    async def search_deals(self, tenant_id: str, query: str, limit: int) -> list[dict[str, Any]]:
        self.calls.append(("search_deals", tenant_id))
        needle = query.lower()
        rows = [
            self._with_stage_name(tenant_id, d)
            for d in self.deals.get(tenant_id, {}).values()
            if needle in d["title"].lower()
        ]
        return rows[:limit]

    async def search_contacts(
        self, tenant_id: str, query: str, limit: int
    ) -> list[dict[str, Any]]:
        self.calls.append(("search_contacts", tenant_id))
        needle = query.lower()
        rows = [
            dict(c)
            for c in self.contacts.get(tenant_id, [])
            if needle in str(c.get("name", "")).lower()
            or needle in str(c.get("email", "")).lower()
        ]
        return rows[:limit]

    async def list_deals(self, tenant_id: str, board_id: str) -> list[dict[str, Any]]:
        self.calls.append(("list_deals", tenant_id))
        return [
            self._with_stage_name(tenant_id, d)
            for d in self.deals.get(tenant_id, {}).values()
            if d.get("board_id") == board_id
        ]

    async def get_deal(self, tenant_id: str, deal_id: str) -> dict[str, Any] | None:
        self.calls.append(("get_deal", tenant_id))
        deal = self.deals.get(tenant_id, {}).get(deal_id)
        return self._with_stage_name(tenant_id, deal) if deal else None

    async def list_stages(self, tenant_id: str, board_id: str) -> list[dict[str, Any]]:
        self.calls.append(("list_stages", tenant_id))
        return [dict(s) for s in self.stages.get(tenant_id, {}).get(board_id, [])]

    async def update_deal(
        self, tenant_id: str, deal_id: str, changes: dict[str, Any]
    ) -> dict[str, Any] | None:
        self.calls.append(("update_deal", tenant_id))
        deal = self.deals.get(tenant_id, {}).get(deal_id)
        if deal is None:
            return None
        deal.update(changes)
        return self._with_stage_name(tenant_id, deal)

    async def create_deal(self, tenant_id: str, values: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("create_deal", tenant_id))
        return self.add_deal(tenant_id, **values)

    async def create_task(self, tenant_id: str, values: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("create_task", tenant_id))
        task = {"id": generate_id(), **values}
        self.tasks.setdefault(tenant_id, []).append(task)
        return task


def seed_store(store: InMemoryCRMStore, tenant_id: str = TENANT_A) -> None:
    """Two-stage board with one open, one stale, one won and one lost deal."""
    store.add_stage(tenant_id, BOARD, "stage-lead", "Lead")
    store.add_stage(tenant_id, BOARD, "stage-proposal", "Proposal")
    store.add_stage(tenant_id, BOARD, "stage-won", "Closed Won")
    store.add_deal(
        tenant_id, id="deal-acme", title="Acme Corp", value=10000, stage_id="stage-lead"
    )
    store.add_deal(
        tenant_id,
        id="deal-globex",
        title="Globex renewal",
        value=5000,
        stage_id="stage-proposal",
        updated_at=(datetime.now(UTC) - timedelta(days=30)).isoformat(),
    )
    store.add_deal(tenant_id, id="deal-won", title="Initech", value=2000, is_won=True)
    store.add_deal(tenant_id, id="deal-lost", title="Umbrella", value=1000, is_lost=True)
    store.add_contact(tenant_id, id="contact-1", name="Maria Silva", email="maria@acme.com")


# ── Fixtures ───────────────────────────────────────────────────────


@pytest.fixture()
def event_log():
    """In-memory SQLiteEventLog."""
    log = SQLiteEventLog(":memory:")
    yield log
    log.close()


@pytest.fixture()
def run_id() -> RunId:
    """Generate a fresh RunId."""
    return generate_run_id()


@pytest.fixture()
def crm_store() -> InMemoryCRMStore:
    """Store seeded for TENANT_A only."""
    store = InMemoryCRMStore()
    seed_store(store, TENANT_A)
    return store


@pytest.fixture()
def registry(crm_store: InMemoryCRMStore) -> ToolRegistry:
    """Registry with the full CRM tool set over ``crm_store``."""
    return build_crm_registry(crm_store)


@pytest.fixture()
def context() -> CallContext:
    """CallContext for TENANT_A on the seeded board."""
    return CallContext(
        tenant_id=TENANT_A,
        user_id="user-1",
        user_name="Ana",
        board_id=BOARD,
        board_name="Sales",
        stages=(
            StageRef(id="stage-lead", name="Lead"),
            StageRef(id="stage-proposal", name="Proposal"),
        ),
        deal_count=4,
        pipeline_value=15000,
        won_stage="Closed Won",
    )


@pytest.fixture()
def run_store() -> InMemoryRunStore:
    return InMemoryRunStore()


# ── Assertion Helpers ──────────────────────────────────────────────


def assert_event_sequence(events: list[BaseEvent], expected_types: list[EventType]) -> None:
    """Assert that events match the expected EventType sequence."""
    actual = [e.event_type for e in events]
    assert actual == expected_types, (
        f"Event sequence mismatch.\n"
        f"  Expected: {[t.value for t in expected_types]}\n"
        f"  Actual:   {[t.value for t in actual]}"
    )


def assert_has_event(
    events: list[BaseEvent],
    event_type: EventType,
    **payload_checks: Any,
) -> BaseEvent:
    """Assert that at least one event of the given type exists and matches payload checks.

    Returns the first matching event.
    """
    matching = [e for e in events if e.event_type == event_type]
    assert matching, f"No event of type {event_type.value} found in {len(events)} events"

    if payload_checks:
        for event in matching:
            if all(event.payload.get(k) == v for k, v in payload_checks.items()):
                return event
        checked = {k: v for k, v in payload_checks.items()}
        raise AssertionError(
            f"Found {len(matching)} {event_type.value} event(s) but none matched "
            f"payload checks: {checked}\n"
            f"Payloads: {[e.payload for e in matching]}"
        )

    return matching[0]
