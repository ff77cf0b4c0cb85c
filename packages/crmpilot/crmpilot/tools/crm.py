"""Built-in CRM tools — tenant-scoped reads and approval-gated writes."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel

from crmpilot.schemas.context import CallContext
from crmpilot.tools.base import BaseTool, EntityRefSpec, ToolFailure, ToolResult, ToolSuccess
from crmpilot.tools.crm_schemas import (
    BoardInput,
    CreateDealInput,
    CreateTaskInput,
    DealRefInput,
    ListDealsByStageInput,
    ListStagnantDealsInput,
    MarkDealLostInput,
    MoveDealInput,
    SearchInput,
    UpdateDealInput,
)
from crmpilot.tools.registry import ToolRegistry
from crmpilot.tools.store import CRMStore

_DEAL_LIST = EntityRefSpec(kind="deal", collection_field="deals")
_SINGLE_DEAL = EntityRefSpec(kind="deal")
_CONTACT_LIST = EntityRefSpec(kind="contact", collection_field="contacts", label_field="name")


def _money(value: float | int | None) -> str:
    return f"R$ {float(value or 0):,.2f}"


def _status(deal: dict[str, Any]) -> str:
    if deal.get("is_won"):
        return "won"
    if deal.get("is_lost"):
        return "lost"
    return "open"


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def _deal_summary(deal: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": deal["id"],
        "title": deal.get("title", ""),
        "value": _money(deal.get("value")),
        "stage": deal.get("stage_name") or deal.get("stage_id") or "N/A",
        "status": _status(deal),
    }


def _is_open(deal: dict[str, Any]) -> bool:
    return not deal.get("is_won") and not deal.get("is_lost")


class _StoreTool(BaseTool):
    """Common plumbing for tools backed by a CRMStore."""

    _name = ""
    _description = ""
    _input_schema: type[BaseModel] = BaseModel

    def __init__(self, store: CRMStore) -> None:
        self._store = store

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def input_schema(self) -> type[BaseModel]:
        return self._input_schema

    async def _find_stage(
        self, context: CallContext, board_id: str, stage_name: str
    ) -> dict[str, Any] | None:
        needle = stage_name.strip().lower()
        for stage in await self._store.list_stages(context.tenant_id, board_id):
            if needle in str(stage.get("name", "")).lower():
                return stage
        return None


# ── Analysis ──────────────────────────────────────────────────────


class AnalyzePipelineTool(_StoreTool):
    """Pipeline metrics with a per-stage breakdown."""

    _name = "analyzePipeline"
    _description = "Analyze the sales pipeline: win rate, open value and per-stage breakdown"
    _input_schema = BoardInput

    async def execute(self, input_data: BaseModel, context: CallContext) -> ToolResult:
        assert isinstance(input_data, BoardInput)
        board_id = input_data.board_id or context.board_id
        if not board_id:
            return ToolFailure(error="No board selected. Open a board or name one.")

        deals = await self._store.list_deals(context.tenant_id, board_id)
        open_deals = [d for d in deals if _is_open(d)]
        won = [d for d in deals if d.get("is_won")]
        lost = [d for d in deals if d.get("is_lost")]
        closed = len(won) + len(lost)
        win_rate = round(len(won) / closed * 100) if closed else 0

        breakdown: dict[str, dict[str, Any]] = {}
        for deal in open_deals:
            stage = deal.get("stage_name") or "No stage"
            entry = breakdown.setdefault(stage, {"count": 0, "value": 0.0})
            entry["count"] += 1
            entry["value"] += float(deal.get("value") or 0)

        return ToolSuccess(
            data={
                "totalDeals": len(deals),
                "openDeals": len(open_deals),
                "wonDeals": len(won),
                "lostDeals": len(lost),
                "metrics": {"winRate": win_rate},
                "pipelineValue": _money(sum(float(d.get("value") or 0) for d in open_deals)),
                "wonValue": _money(sum(float(d.get("value") or 0) for d in won)),
                "stageBreakdown": breakdown,
            }
        )


# ── Search ────────────────────────────────────────────────────────


class SearchDealsTool(_StoreTool):
    _name = "searchDeals"
    _description = "Search deals by title"
    _input_schema = SearchInput

    @property
    def entity_refs(self) -> EntityRefSpec:
        return _DEAL_LIST

    async def execute(self, input_data: BaseModel, context: CallContext) -> ToolResult:
        assert isinstance(input_data, SearchInput)
        deals = await self._store.search_deals(
            context.tenant_id, input_data.query, input_data.limit
        )
        return ToolSuccess(
            data={
                "count": len(deals),
                "deals": [_deal_summary(d) for d in deals],
                "message": f"{len(deals)} deal(s) found for '{input_data.query}'.",
            }
        )


class SearchContactsTool(_StoreTool):
    _name = "searchContacts"
    _description = "Search contacts by name or email"
    _input_schema = SearchInput

    @property
    def entity_refs(self) -> EntityRefSpec:
        return _CONTACT_LIST

    async def execute(self, input_data: BaseModel, context: CallContext) -> ToolResult:
        assert isinstance(input_data, SearchInput)
        contacts = await self._store.search_contacts(
            context.tenant_id, input_data.query, input_data.limit
        )
        return ToolSuccess(
            data={
                "count": len(contacts),
                "contacts": [
                    {
                        "id": c["id"],
                        "name": c.get("name", ""),
                        "email": c.get("email") or "N/A",
                        "phone": c.get("phone") or "N/A",
                    }
                    for c in contacts
                ],
                "message": f"{len(contacts)} contact(s) found.",
            }
        )


class ListDealsByStageTool(_StoreTool):
    _name = "listDealsByStage"
    _description = "List open deals in a given stage of the board"
    _input_schema = ListDealsByStageInput

    @property
    def entity_refs(self) -> EntityRefSpec:
        return _DEAL_LIST

    async def execute(self, input_data: BaseModel, context: CallContext) -> ToolResult:
        assert isinstance(input_data, ListDealsByStageInput)
        board_id = input_data.board_id or context.board_id
        if not board_id:
            return ToolFailure(error="No board selected.")

        stage_id = input_data.stage_id
        if stage_id is None:
            if not input_data.stage_name:
                return ToolFailure(error="Provide stage_name or stage_id.")
            stage = await self._find_stage(context, board_id, input_data.stage_name)
            if stage is None:
                return ToolFailure(error=f"Stage '{input_data.stage_name}' not found.")
            stage_id = stage["id"]

        deals = [
            d
            for d in await self._store.list_deals(context.tenant_id, board_id)
            if d.get("stage_id") == stage_id and _is_open(d)
        ][: input_data.limit]
        return ToolSuccess(
            data={
                "count": len(deals),
                "deals": [_deal_summary(d) for d in deals],
                "message": f"{len(deals)} deal(s) in this stage.",
            }
        )


class ListStagnantDealsTool(_StoreTool):
    _name = "listStagnantDeals"
    _description = "List open deals without updates for a number of days"
    _input_schema = ListStagnantDealsInput

    @property
    def entity_refs(self) -> EntityRefSpec:
        return _DEAL_LIST

    async def execute(self, input_data: BaseModel, context: CallContext) -> ToolResult:
        assert isinstance(input_data, ListStagnantDealsInput)
        board_id = input_data.board_id or context.board_id
        if not board_id:
            return ToolFailure(error="No board selected.")

        cutoff = datetime.now(UTC) - timedelta(days=input_data.days_stagnant)
        stagnant = []
        for deal in await self._store.list_deals(context.tenant_id, board_id):
            updated = _as_datetime(deal.get("updated_at"))
            if _is_open(deal) and updated is not None and updated < cutoff:
                stagnant.append(deal)
        stagnant = stagnant[: input_data.limit]
        return ToolSuccess(
            data={
                "count": len(stagnant),
                "deals": [_deal_summary(d) for d in stagnant],
                "message": (
                    f"{len(stagnant)} deal(s) idle for more than "
                    f"{input_data.days_stagnant} days."
                ),
            }
        )


class GetDealDetailsTool(_StoreTool):
    _name = "getDealDetails"
    _description = "Show full details of a deal"
    _input_schema = DealRefInput

    @property
    def entity_refs(self) -> EntityRefSpec:
        return _SINGLE_DEAL

    async def execute(self, input_data: BaseModel, context: CallContext) -> ToolResult:
        assert isinstance(input_data, DealRefInput)
        deal_id = input_data.deal_id or context.deal_id
        if not deal_id:
            return ToolFailure(error="No deal specified.")
        deal = await self._store.get_deal(context.tenant_id, deal_id)
        if deal is None:
            return ToolFailure(error="Deal not found.")
        return ToolSuccess(
            data={
                **_deal_summary(deal),
                "priority": deal.get("priority") or "medium",
                "contact": deal.get("contact_name") or "N/A",
                "updatedAt": deal.get("updated_at"),
            }
        )


# ── Actions (approval required) ───────────────────────────────────


class _ApprovalTool(_StoreTool):
    @property
    def requires_approval(self) -> bool:
        return True

    @property
    def entity_refs(self) -> EntityRefSpec | None:
        return _SINGLE_DEAL

    async def _load_deal(
        self, context: CallContext, deal_id: str | None
    ) -> dict[str, Any] | ToolFailure:
        target = deal_id or context.deal_id
        if not target:
            return ToolFailure(error="No deal specified.")
        deal = await self._store.get_deal(context.tenant_id, target)
        if deal is None:
            return ToolFailure(error="Deal not found.")
        return deal


class MoveDealTool(_ApprovalTool):
    _name = "moveDeal"
    _description = "Move a deal to another pipeline stage"
    _input_schema = MoveDealInput

    async def execute(self, input_data: BaseModel, context: CallContext) -> ToolResult:
        assert isinstance(input_data, MoveDealInput)
        deal = await self._load_deal(context, input_data.deal_id)
        if isinstance(deal, ToolFailure):
            return deal

        stage_id = input_data.stage_id
        stage_name = input_data.stage_name
        if stage_id is None:
            if not stage_name:
                return ToolFailure(error="Specify the target stage.")
            stage = await self._find_stage(context, deal["board_id"], stage_name)
            if stage is None:
                return ToolFailure(error=f"Stage '{stage_name}' not found.")
            stage_id, stage_name = stage["id"], stage["name"]

        await self._store.update_deal(
            context.tenant_id,
            deal["id"],
            {"stage_id": stage_id, "updated_at": datetime.now(UTC).isoformat()},
        )
        return ToolSuccess(
            data={
                "id": deal["id"],
                "title": deal.get("title", ""),
                "stage": stage_name or stage_id,
                "message": f"Deal \"{deal.get('title', '')}\" moved to {stage_name or stage_id}.",
            }
        )


class CreateDealTool(_ApprovalTool):
    _name = "createDeal"
    _description = "Create a new deal in the first stage of the board"
    _input_schema = CreateDealInput

    async def execute(self, input_data: BaseModel, context: CallContext) -> ToolResult:
        assert isinstance(input_data, CreateDealInput)
        board_id = input_data.board_id or context.board_id
        if not board_id:
            return ToolFailure(error="No board selected.")
        stages = await self._store.list_stages(context.tenant_id, board_id)
        if not stages:
            return ToolFailure(error="Board has no stages.")

        deal = await self._store.create_deal(
            context.tenant_id,
            {
                "title": input_data.title,
                "value": input_data.value,
                "board_id": board_id,
                "stage_id": stages[0]["id"],
                "contact_name": input_data.contact_name,
                "owner_id": context.user_id,
                "is_won": False,
                "is_lost": False,
                "updated_at": datetime.now(UTC).isoformat(),
            },
        )
        return ToolSuccess(
            data={
                "id": deal["id"],
                "title": deal.get("title", input_data.title),
                "message": f"Deal \"{input_data.title}\" created ({_money(input_data.value)}).",
            }
        )


class UpdateDealTool(_ApprovalTool):
    _name = "updateDeal"
    _description = "Update title, value or priority of a deal"
    _input_schema = UpdateDealInput

    async def execute(self, input_data: BaseModel, context: CallContext) -> ToolResult:
        assert isinstance(input_data, UpdateDealInput)
        deal = await self._load_deal(context, input_data.deal_id)
        if isinstance(deal, ToolFailure):
            return deal
        changes = input_data.model_dump(exclude={"deal_id"}, exclude_none=True)
        if not changes:
            return ToolFailure(error="Nothing to update.")
        changes["updated_at"] = datetime.now(UTC).isoformat()
        await self._store.update_deal(context.tenant_id, deal["id"], changes)
        return ToolSuccess(
            data={
                "id": deal["id"],
                "title": changes.get("title", deal.get("title", "")),
                "message": f"Deal updated: {', '.join(sorted(changes))}.",
            }
        )


class MarkDealAsWonTool(_ApprovalTool):
    _name = "markDealAsWon"
    _description = "Mark a deal as won"
    _input_schema = DealRefInput

    async def execute(self, input_data: BaseModel, context: CallContext) -> ToolResult:
        assert isinstance(input_data, DealRefInput)
        deal = await self._load_deal(context, input_data.deal_id)
        if isinstance(deal, ToolFailure):
            return deal
        changes: dict[str, Any] = {
            "is_won": True,
            "is_lost": False,
            "closed_at": datetime.now(UTC).isoformat(),
        }
        if context.won_stage:
            stage = await self._find_stage(context, deal["board_id"], context.won_stage)
            if stage is not None:
                changes["stage_id"] = stage["id"]
        await self._store.update_deal(context.tenant_id, deal["id"], changes)
        return ToolSuccess(
            data={
                "id": deal["id"],
                "title": deal.get("title", ""),
                "message": f"Deal \"{deal.get('title', '')}\" marked as won.",
            }
        )


class MarkDealAsLostTool(_ApprovalTool):
    _name = "markDealAsLost"
    _description = "Mark a deal as lost, optionally with a reason"
    _input_schema = MarkDealLostInput

    async def execute(self, input_data: BaseModel, context: CallContext) -> ToolResult:
        assert isinstance(input_data, MarkDealLostInput)
        deal = await self._load_deal(context, input_data.deal_id)
        if isinstance(deal, ToolFailure):
            return deal
        changes: dict[str, Any] = {
            "is_lost": True,
            "is_won": False,
            "loss_reason": input_data.reason,
            "closed_at": datetime.now(UTC).isoformat(),
        }
        if context.lost_stage:
            stage = await self._find_stage(context, deal["board_id"], context.lost_stage)
            if stage is not None:
                changes["stage_id"] = stage["id"]
        await self._store.update_deal(context.tenant_id, deal["id"], changes)
        return ToolSuccess(
            data={
                "id": deal["id"],
                "title": deal.get("title", ""),
                "message": f"Deal \"{deal.get('title', '')}\" marked as lost.",
            }
        )


class CreateTaskTool(_ApprovalTool):
    _name = "createTask"
    _description = "Create a follow-up task, optionally linked to a deal"
    _input_schema = CreateTaskInput

    @property
    def entity_refs(self) -> EntityRefSpec | None:
        return None

    async def execute(self, input_data: BaseModel, context: CallContext) -> ToolResult:
        assert isinstance(input_data, CreateTaskInput)
        task = await self._store.create_task(
            context.tenant_id,
            {
                "title": input_data.title,
                "description": input_data.description,
                "deal_id": input_data.deal_id or context.deal_id,
                "due_date": input_data.due_date.isoformat() if input_data.due_date else None,
                "owner_id": context.user_id,
                "completed": False,
            },
        )
        return ToolSuccess(
            data={"taskId": task["id"], "message": f"Task \"{input_data.title}\" created."}
        )


def create_crm_tools(store: CRMStore) -> list[BaseTool]:
    """Instantiate the full CRM tool set over a store."""
    return [
        AnalyzePipelineTool(store),
        SearchDealsTool(store),
        SearchContactsTool(store),
        ListDealsByStageTool(store),
        ListStagnantDealsTool(store),
        GetDealDetailsTool(store),
        MoveDealTool(store),
        CreateDealTool(store),
        UpdateDealTool(store),
        MarkDealAsWonTool(store),
        MarkDealAsLostTool(store),
        CreateTaskTool(store),
    ]


def build_crm_registry(store: CRMStore) -> ToolRegistry:
    """A registry holding the CRM tool set."""
    registry = ToolRegistry()
    for tool in create_crm_tools(store):
        registry.register(tool)
    return registry
