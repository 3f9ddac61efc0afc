"""Persistence interface the sync orchestrator depends on.

EightSleepRepository implements it against Postgres; unit tests use an
in-memory fake. Every write is durable on return, so a sync run that fails
half-way keeps the nights it already wrote.
"""

from datetime import datetime, time
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from eight_sleep.domain.models import Integration

INTEGRATION_TYPE = "eight_sleep"


@runtime_checkable
class EightSleepStore(Protocol):
    async def get_integration(self, user_id: UUID) -> Integration | None: ...

    async def save_integration(self, user_id: UUID, values: dict[str, Any]) -> Integration:
        """Insert or replace the user's integration (one per user)."""
        ...

    async def update_integration(self, integration_id: UUID, values: dict[str, Any]) -> None: ...

    async def delete_integration(self, user_id: UUID) -> None:
        """Delete the integration; its sleep sessions go with it."""
        ...

    async def list_sync_candidates(self) -> list[Integration]:
        """Active integrations with sync enabled."""
        ...

    async def upsert_schedule(
        self, user_id: UUID, *, sync_time: time, timezone: str, is_enabled: bool = True
    ) -> None: ...

    async def update_schedule(self, user_id: UUID, values: dict[str, Any]) -> None: ...

    async def mark_schedule_run(self, user_id: UUID, ran_at: datetime) -> None: ...

    async def delete_schedule(self, user_id: UUID) -> None: ...

    async def upsert_sleep_session(self, values: dict[str, Any]) -> None:
        """Insert or overwrite the night keyed by (user_id, date)."""
        ...
