"""Collaborators the workspace reads from but does not own.

The company directory, the calendar and the team roster live outside the
workspace layer; only their read interfaces are defined here, with in-memory
implementations used by the service when nothing else is wired in.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from datetime import datetime
from typing import Literal, Protocol

from pydantic import BaseModel, Field


EntityType = Literal["client", "partner"]
CalendarEventType = Literal["meeting", "call", "task", "reminder"]


class TeamMember(BaseModel):
    id: str
    name: str
    email: str
    role: str
    avatar_url: str | None = None


class CompanyContact(BaseModel):
    id: str | None = None
    name: str
    emails: list[str] = Field(default_factory=list)
    role: str | None = None


class Company(BaseModel):
    id: str
    name: str
    entity_type: EntityType = "client"
    last_contact_date: datetime
    contacts: list[CompanyContact] = Field(default_factory=list)


class CalendarEvent(BaseModel):
    id: str
    title: str
    type: CalendarEventType = "meeting"
    company_id: str | None = None
    company_name: str | None = None
    start_time: datetime
    end_time: datetime | None = None
    attendees: list[str] = Field(default_factory=list)


class TeamRoster:
    """Static, ordered list of team members."""

    def __init__(self, members: Iterable[TeamMember]) -> None:
        self._members = list(members)
        self._by_id = {member.id: member for member in self._members}

    def __iter__(self) -> Iterator[TeamMember]:
        return iter(self._members)

    def __len__(self) -> int:
        return len(self._members)

    def get(self, user_id: str) -> TeamMember | None:
        return self._by_id.get(user_id)

    def name_of(self, user_id: str) -> str:
        member = self._by_id.get(user_id)
        return member.name if member is not None else user_id


DEFAULT_ROSTER = TeamRoster(
    [
        TeamMember(id="mathis", name="Mathis", email="mathis@lexia.fr", role="Account Executive", avatar_url="/mathis.jpg"),
        TeamMember(id="martial", name="Martial", email="martial@lexia.fr", role="Sales Director", avatar_url="/martial.jpg"),
        TeamMember(id="hugo", name="Hugo", email="hugo@lexia.fr", role="Customer Success Manager", avatar_url="/hugo.jpg"),
    ]
)


class CompanyDirectory(Protocol):
    async def list_companies(self) -> list[Company]: ...

    async def get_company(self, company_id: str) -> Company | None: ...


class CalendarProvider(Protocol):
    async def list_events(self, start: datetime, end: datetime) -> list[CalendarEvent]: ...


class InMemoryCompanyDirectory:
    def __init__(self, companies: Iterable[Company] = ()) -> None:
        self._companies = {company.id: company for company in companies}

    def upsert(self, company: Company) -> None:
        self._companies[company.id] = company

    async def list_companies(self) -> list[Company]:
        return list(self._companies.values())

    async def get_company(self, company_id: str) -> Company | None:
        return self._companies.get(company_id)


class InMemoryCalendarProvider:
    def __init__(self, events: Iterable[CalendarEvent] = ()) -> None:
        self._events = list(events)

    def add(self, event: CalendarEvent) -> None:
        self._events.append(event)

    async def list_events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        return [event for event in self._events if start <= event.start_time < end]
