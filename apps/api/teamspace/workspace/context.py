from __future__ import annotations

from dataclasses import dataclass, field

import httpx

from teamspace.core.config import Settings, get_settings
from teamspace.core.events import WorkspaceEventBus, event_bus
from teamspace.persistence.gateway import PersistenceGateway
from teamspace.persistence.local_store import LocalStore
from teamspace.workspace.directory import (
    DEFAULT_ROSTER,
    CalendarProvider,
    CompanyDirectory,
    InMemoryCalendarProvider,
    InMemoryCompanyDirectory,
    TeamRoster,
)


@dataclass
class WorkspaceContext:
    """Everything a store needs, built once per session and passed explicitly."""

    settings: Settings
    gateway: PersistenceGateway
    roster: TeamRoster = DEFAULT_ROSTER
    directory: CompanyDirectory = field(default_factory=InMemoryCompanyDirectory)
    calendar: CalendarProvider = field(default_factory=InMemoryCalendarProvider)
    bus: WorkspaceEventBus = event_bus

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        *,
        roster: TeamRoster | None = None,
        directory: CompanyDirectory | None = None,
        calendar: CalendarProvider | None = None,
        bus: WorkspaceEventBus | None = None,
        local_store: LocalStore | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> "WorkspaceContext":
        resolved = settings or get_settings()
        store = local_store or LocalStore.from_url(resolved.local_database_url)
        gateway = PersistenceGateway(resolved, local_store=store, http_client=http_client)
        return cls(
            settings=resolved,
            gateway=gateway,
            roster=roster or DEFAULT_ROSTER,
            directory=directory or InMemoryCompanyDirectory(),
            calendar=calendar or InMemoryCalendarProvider(),
            bus=bus or event_bus,
        )

    async def aclose(self) -> None:
        await self.gateway.aclose()
