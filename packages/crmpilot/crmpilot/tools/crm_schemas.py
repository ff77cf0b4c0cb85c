"""Input schemas for the built-in CRM tools."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field


class BoardInput(BaseModel):
    board_id: str | None = Field(default=None, description="Board id (defaults to the current board)")


class SearchInput(BaseModel):
    query: str = Field(min_length=1, description="Search term")
    limit: int = Field(default=5, ge=1, le=50)


class ListDealsByStageInput(BaseModel):
    stage_name: str | None = Field(default=None, description="Stage name (partial match)")
    stage_id: str | None = None
    board_id: str | None = None
    limit: int = Field(default=10, ge=1, le=50)


class ListStagnantDealsInput(BaseModel):
    board_id: str | None = None
    days_stagnant: int = Field(default=7, ge=1, description="Days without updates")
    limit: int = Field(default=10, ge=1, le=50)


class DealRefInput(BaseModel):
    deal_id: str | None = Field(default=None, description="Deal id (defaults to the current deal)")


class MoveDealInput(BaseModel):
    deal_id: str | None = Field(default=None, description="Deal id (defaults to the current deal)")
    stage_name: str | None = Field(default=None, description="Target stage name")
    stage_id: str | None = Field(default=None, description="Target stage id")


class CreateDealInput(BaseModel):
    title: str = Field(min_length=1, description="Deal title")
    value: float = Field(default=0, ge=0, description="Deal value")
    contact_name: str | None = None
    board_id: str | None = None


class UpdateDealInput(BaseModel):
    deal_id: str | None = None
    title: str | None = Field(default=None, min_length=1)
    value: float | None = Field(default=None, ge=0)
    priority: str | None = Field(default=None, pattern="^(low|medium|high)$")


class MarkDealLostInput(BaseModel):
    deal_id: str | None = None
    reason: str | None = Field(default=None, description="Why the deal was lost")


class CreateTaskInput(BaseModel):
    title: str = Field(min_length=1)
    deal_id: str | None = None
    due_date: date | None = None
    description: str | None = None
