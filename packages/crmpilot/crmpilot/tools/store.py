"""CRM store interface — the data-store collaborator used by the CRM tools.

The relational store and its schema live outside this package. Tools only
talk to it through this narrow async interface, and every method takes the
tenant id first so no call can escape the run's tenant.

Deal rows are plain dicts with at least ``id``, ``title``, ``value``,
``board_id``, ``stage_id``, ``is_won``, ``is_lost`` and ``updated_at``
(an aware datetime or ISO-8601 string). Stage rows carry ``id``, ``name``
and ``order``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class CRMStore(ABC):
    """Tenant-scoped read/write access to deals, contacts, stages and tasks."""

    @abstractmethod
    async def search_deals(self, tenant_id: str, query: str, limit: int) -> list[dict[str, Any]]:
        """Case-insensitive title search."""

    @abstractmethod
    async def search_contacts(
        self, tenant_id: str, query: str, limit: int
    ) -> list[dict[str, Any]]:
        """Case-insensitive name/email search."""

    @abstractmethod
    async def list_deals(self, tenant_id: str, board_id: str) -> list[dict[str, Any]]:
        """All deals on a board."""

    @abstractmethod
    async def get_deal(self, tenant_id: str, deal_id: str) -> dict[str, Any] | None:
        """A single deal, or None."""

    @abstractmethod
    async def list_stages(self, tenant_id: str, board_id: str) -> list[dict[str, Any]]:
        """Stages of a board, ordered."""

    @abstractmethod
    async def update_deal(
        self, tenant_id: str, deal_id: str, changes: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Apply changes to a deal; returns the updated row or None if missing."""

    @abstractmethod
    async def create_deal(self, tenant_id: str, values: dict[str, Any]) -> dict[str, Any]:
        """Insert a deal and return the stored row."""

    @abstractmethod
    async def create_task(self, tenant_id: str, values: dict[str, Any]) -> dict[str, Any]:
        """Insert a task/activity and return the stored row."""
