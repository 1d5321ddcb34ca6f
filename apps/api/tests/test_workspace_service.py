from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from teamspace.core.config import Settings
from teamspace.core.errors import NotFoundError, ValidationError
from teamspace.core.events import Channel, InternalEvent, WorkspaceEventBus
from teamspace.persistence.local_store import LocalStore
from teamspace.workspace.context import WorkspaceContext
from teamspace.workspace.directory import (
    CalendarEvent,
    Company,
    CompanyContact,
    InMemoryCalendarProvider,
    InMemoryCompanyDirectory,
)
from teamspace.workspace.schemas import (
    EmailTemplateCreate,
    ProjectCreate,
    ProjectDocumentRequest,
    ProjectUpdate,
    TaskCreate,
)
from teamspace.workspace.service import WorkspaceService


NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def bus() -> WorkspaceEventBus:
    return WorkspaceEventBus()


@pytest.fixture()
def published(bus: WorkspaceEventBus) -> list[InternalEvent]:
    events: list[InternalEvent] = []
    for channel in Channel:
        bus.subscribe(channel, events.append)
    return events


@pytest.fixture()
def service(bus: WorkspaceEventBus) -> WorkspaceService:
    settings = Settings(_env_file=None, remote_api_url=None, remote_api_key=None)
    directory = InMemoryCompanyDirectory(
        [
            Company(
                id="company-a",
                name="Acme",
                last_contact_date=NOW - timedelta(days=3),
                contacts=[CompanyContact(name="Wile Coyote", emails=["wile@acme.test"])],
            ),
            Company(id="company-g", name="Globex", entity_type="partner", last_contact_date=NOW),
        ]
    )
    calendar = InMemoryCalendarProvider(
        [
            CalendarEvent(id="ev-2", title="Acme demo", start_time=NOW.replace(hour=15)),
            CalendarEvent(id="ev-1", title="Standup", start_time=NOW.replace(hour=9)),
            CalendarEvent(id="ev-3", title="Tomorrow", start_time=NOW + timedelta(days=1)),
        ]
    )
    context = WorkspaceContext.create(
        settings,
        local_store=LocalStore.from_url("sqlite+pysqlite:///:memory:"),
        directory=directory,
        calendar=calendar,
        bus=bus,
    )
    return WorkspaceService(context)


def _channels(events: list[InternalEvent]) -> set[str]:
    return {event.channel.value for event in events}


def test_add_task_records_activity_and_notifies_other_assignees(
    service: WorkspaceService,
    published: list[InternalEvent],
) -> None:
    async def scenario():
        task = await service.add_task(
            TaskCreate(title="Send proposal", company_id="company-a", assigned_to=["hugo", "martial"]),
            actor_id="martial",
        )
        return (
            task,
            await service.get_recent_activity(),
            await service.get_my_notifications("hugo"),
            await service.get_my_notifications("martial"),
        )

    task, activity, hugo_inbox, martial_inbox = asyncio.run(scenario())

    assert task.assigned_by == "martial"
    assert task.company_name == "Acme"
    assert [(entry.action, entry.target_type, entry.target_id) for entry in activity] == [
        ("created", "task", task.id)
    ]
    assert activity[0].description == "For Acme"
    assert len(hugo_inbox) == 1
    assert hugo_inbox[0].type == "task_assigned"
    assert hugo_inbox[0].message == "Martial assigned you: Send proposal"
    assert hugo_inbox[0].link == "/company/company-a"
    assert martial_inbox == []
    assert {"tasks-update", "activity-update", "notification-update"} <= _channels(published)


def test_company_name_is_a_snapshot(service: WorkspaceService) -> None:
    async def scenario():
        task = await service.add_task(TaskCreate(title="Call", company_id="company-a", assigned_to=["hugo"]), "hugo")
        service.context.directory.upsert(
            Company(id="company-a", name="Acme Corp", last_contact_date=NOW)
        )
        return await service.get_task(task.id)

    assert asyncio.run(scenario()).company_name == "Acme"


def test_completing_a_task_is_recorded_once_as_completed(service: WorkspaceService) -> None:
    async def scenario():
        task = await service.add_task(TaskCreate(title="Prepare deck", assigned_to=["hugo"]), "hugo")
        await service.update_task(task.id, {"status": "completed"}, "hugo")
        await service.update_task(task.id, {"priority": "high"}, "hugo")
        return await service.get_team_activity()

    activity = asyncio.run(scenario())

    assert [entry.action for entry in activity] == ["updated", "completed", "created"]


def test_reassigning_a_task_notifies_only_new_assignees(service: WorkspaceService) -> None:
    async def scenario():
        task = await service.add_task(TaskCreate(title="Prepare deck", assigned_to=["hugo"]), "martial")
        await service.update_task(task.id, {"assigned_to": ["hugo", "mathis"]}, "martial")
        return await service.get_my_notifications("hugo"), await service.get_my_notifications("mathis")

    hugo_inbox, mathis_inbox = asyncio.run(scenario())

    assert len(hugo_inbox) == 1
    assert len(mathis_inbox) == 1
    assert mathis_inbox[0].link.startswith("/tasks/")


def test_failed_mutation_records_no_activity(service: WorkspaceService, published: list[InternalEvent]) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(service.update_task("task-missing", {"status": "completed"}, "hugo"))

    assert asyncio.run(service.get_team_activity()) == []
    assert published == []


def test_my_tasks_excludes_completed_work(service: WorkspaceService) -> None:
    async def scenario():
        open_task = await service.add_task(TaskCreate(title="Open", assigned_to=["hugo", "mathis"]), "martial")
        done = await service.add_task(TaskCreate(title="Done", assigned_to=["hugo"]), "martial")
        await service.update_task(done.id, {"status": "completed"}, "hugo")
        await service.add_task(TaskCreate(title="Other", assigned_to=["mathis"]), "martial")
        return open_task, await service.get_my_tasks("hugo")

    open_task, mine = asyncio.run(scenario())

    assert [task.id for task in mine] == [open_task.id]


def test_project_lifecycle_with_members_documents_and_won_deal(service: WorkspaceService) -> None:
    async def scenario():
        project = await service.add_project(
            ProjectCreate(title="Acme rollout", company_id="company-a", stage="negotiation", budget=12000),
            actor_id="martial",
        )
        await service.add_project_member(project.id, "hugo", "martial")
        await service.add_project_document(
            project.id,
            ProjectDocumentRequest(name="Proposal", url="https://docs.test/proposal.pdf", type="pdf"),
            "hugo",
        )
        await service.update_project(project.id, {"stage": "closed_won"}, "martial")
        return (
            await service.get_project_by_id(project.id),
            await service.get_recent_activity(),
            await service.get_my_notifications("hugo"),
            await service.get_my_notifications("martial"),
        )

    detail, activity, hugo_inbox, martial_inbox = asyncio.run(scenario())

    assert detail.owner_id == "martial"
    assert detail.company_name == "Acme"
    assert detail.stage == "closed_won"
    assert [(member.user_id, member.role) for member in detail.members] == [("martial", "owner"), ("hugo", "member")]
    assert [document.added_by for document in detail.documents] == ["hugo"]
    assert [(entry.action, entry.target_type) for entry in activity] == [
        ("signed", "deal"),
        ("updated", "project"),
        ("updated", "project"),
        ("created", "project"),
    ]
    assert [item.type for item in hugo_inbox] == ["deal_won"]
    assert martial_inbox == []


def test_deleting_a_project_removes_its_children(service: WorkspaceService) -> None:
    async def scenario():
        project = await service.add_project(ProjectCreate(title="Short lived"), "hugo")
        await service.add_project_note(project.id, "kick-off notes", "hugo")
        await service.delete_project(project.id)
        await service.delete_project(project.id)
        store = service.context.gateway.local_store
        return project, store.select("project_members"), store.select("project_notes")

    project, members, notes = asyncio.run(scenario())

    assert members == []
    assert notes == []
    with pytest.raises(NotFoundError):
        asyncio.run(service.get_project_by_id(project.id))


def test_note_mentions_notify_everyone_but_the_author(service: WorkspaceService) -> None:
    async def scenario():
        project = await service.add_project(ProjectCreate(title="Acme rollout"), "martial")
        note = await service.add_project_note(project.id, "@Hugo @Martial please review the pricing", "martial")
        return (
            note,
            await service.get_my_notifications("hugo"),
            await service.get_my_notifications("martial"),
            await service.get_my_mentions("hugo"),
            await service.get_project_notes(project.id),
        )

    note, hugo_inbox, martial_inbox, hugo_mentions, notes = asyncio.run(scenario())

    assert note.mentions == ["hugo", "martial"]
    assert [item.type for item in hugo_inbox] == ["mention"]
    assert hugo_inbox[0].title == "Martial mentioned you"
    assert martial_inbox == []
    assert [(item.source, item.id) for item in hugo_mentions] == [("project_note", note.id)]
    assert [item.id for item in notes] == [note.id]


def test_task_comments_are_scoped_to_their_task(service: WorkspaceService) -> None:
    async def scenario():
        task = await service.add_task(TaskCreate(title="Follow up", assigned_to=["hugo"]), "hugo")
        comment = await service.add_task_comment(task.id, "@mathis can you take this?", "hugo")
        await service.delete_task(task.id)
        return comment, await service.get_task_comments(task.id), await service.get_my_notifications("mathis")

    comment, remaining, mathis_inbox = asyncio.run(scenario())

    assert comment.mentions == ["mathis"]
    assert remaining == []
    assert [item.type for item in mathis_inbox] == ["mention"]


def test_comment_on_missing_task_is_rejected(service: WorkspaceService) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(service.add_task_comment("task-missing", "hello", "hugo"))


def test_log_activity_resolves_mentions(service: WorkspaceService) -> None:
    async def scenario():
        entry = await service.log_activity(
            "martial",
            "contacted",
            "company",
            "company-a",
            "Acme",
            description="Call went well, @hugo send the deck",
        )
        return entry, await service.get_my_notifications("hugo"), await service.get_activity_for("company", "company-a")

    entry, hugo_inbox, timeline = asyncio.run(scenario())

    assert entry.mentioned_users == ["hugo"]
    assert hugo_inbox[0].link == "/company/company-a"
    assert [item.id for item in timeline] == [entry.id]


def test_notifications_read_state(service: WorkspaceService) -> None:
    async def scenario():
        for title in ("One", "Two", "Three"):
            await service.add_task(TaskCreate(title=title, assigned_to=["hugo"]), "martial")
        inbox = await service.get_my_notifications("hugo")
        before = await service.get_unread_count("hugo")
        await service.mark_as_read(inbox[0].id)
        after_one = await service.get_unread_count("hugo")
        updated = await service.mark_all_as_read("hugo")
        return before, after_one, updated, await service.get_unread_count("hugo")

    assert asyncio.run(scenario()) == (3, 2, 2, 0)


def test_notification_inbox_is_limited(service: WorkspaceService) -> None:
    service.context.settings.notifications_limit = 2

    async def scenario():
        for title in ("One", "Two", "Three"):
            await service.add_task(TaskCreate(title=title, assigned_to=["hugo"]), "martial")
        return await service.get_my_notifications("hugo")

    assert len(asyncio.run(scenario())) == 2


def test_email_template_crud(service: WorkspaceService, published: list[InternalEvent]) -> None:
    async def scenario():
        template = await service.add_email_template(
            EmailTemplateCreate(name="Intro", subject="Hello {{name}}", category="introduction"),
            "mathis",
        )
        await service.update_email_template(template.id, {"subject": "Hi {{name}}"})
        listed = await service.get_email_templates("introduction")
        await service.delete_email_template(template.id)
        return template, listed, await service.get_email_templates()

    template, listed, remaining = asyncio.run(scenario())

    assert template.created_by == "mathis"
    assert [item.subject for item in listed] == ["Hi {{name}}"]
    assert remaining == []
    assert _channels(published) == {"email-templates-update"}


def test_search_spans_companies_tasks_and_team(service: WorkspaceService) -> None:
    async def scenario():
        await service.add_task(TaskCreate(title="Call Acme back", assigned_to=["hugo"]), "hugo")
        return await service.search("acme"), await service.search("wile"), await service.search("hug"), await service.search("  ")

    acme, contact, team, blank = asyncio.run(scenario())

    assert [company.id for company in acme.companies] == ["company-a"]
    assert [task.title for task in acme.tasks] == ["Call Acme back"]
    assert [company.id for company in contact.companies] == ["company-a"]
    assert [member.id for member in team.team] == ["hugo"]
    assert blank.companies == [] and blank.tasks == [] and blank.team == []


def test_today_events_are_sorted_and_bounded_to_the_day(service: WorkspaceService) -> None:
    events = asyncio.run(service.get_today_events(now=NOW))

    assert [event.id for event in events] == ["ev-1", "ev-2"]


def test_csv_exports(service: WorkspaceService) -> None:
    async def scenario():
        await service.add_task(TaskCreate(title="Call", assigned_to=["hugo", "mathis"]), "martial")
        await service.add_project(ProjectCreate(title="Deal", budget=500), "martial")
        return await service.export_tasks_csv(), await service.export_deals_csv()

    tasks_csv, deals_csv = asyncio.run(scenario())

    assert tasks_csv.split("\n")[1].split(",")[3] == "hugo;mathis"
    assert deals_csv.split("\n")[1].split(",")[5] == "500"


def test_removing_documents_and_members_is_recorded_on_the_project(service: WorkspaceService) -> None:
    async def scenario():
        project = await service.add_project(ProjectCreate(title="Acme rollout"), "martial")
        document = await service.add_project_document(
            project.id,
            ProjectDocumentRequest(name="Brief", url="https://docs.test/brief"),
            "martial",
        )
        await service.add_project_member(project.id, "hugo", "martial")
        await service.remove_project_member(project.id, "hugo", "martial")
        await service.remove_project_member(project.id, "hugo", "martial")
        await service.delete_project_document(document.id, "martial")
        await service.delete_project_document(document.id, "martial")
        return await service.get_project_by_id(project.id), await service.get_activity_for("project", project.id)

    detail, timeline = asyncio.run(scenario())

    assert detail.documents == []
    assert [member.user_id for member in detail.members] == ["martial"]
    assert [entry.description for entry in timeline] == [
        "Document removed: Brief",
        "Hugo left the project",
        "Hugo joined the project",
        "Document added: Brief",
        None,
    ]


def test_tasks_by_company(service: WorkspaceService) -> None:
    async def scenario():
        acme = await service.add_task(TaskCreate(title="Acme call", company_id="company-a", assigned_to=["hugo"]), "hugo")
        await service.add_task(TaskCreate(title="Internal", assigned_to=["hugo"]), "hugo")
        return acme, await service.get_tasks_by_company("company-a")

    acme, tasks = asyncio.run(scenario())

    assert [task.id for task in tasks] == [acme.id]


def test_empty_patch_changes_nothing_and_records_nothing(
    service: WorkspaceService,
    published: list[InternalEvent],
) -> None:
    async def scenario():
        task = await service.add_task(TaskCreate(title="Prepare deck", assigned_to=["hugo"]), "hugo")
        project = await service.add_project(ProjectCreate(title="Acme rollout"), "martial")
        published.clear()
        same_task = await service.update_task(task.id, {}, "hugo")
        same_project = await service.update_project(project.id, ProjectUpdate(), "martial")
        return task, project, same_task, same_project, await service.get_team_activity()

    task, project, same_task, same_project, activity = asyncio.run(scenario())

    assert same_task == task
    assert same_project == project
    assert [entry.action for entry in activity] == ["created", "created"]
    assert published == []


def test_null_status_patch_leaves_the_dashboard_readable(service: WorkspaceService) -> None:
    async def scenario():
        task = await service.add_task(TaskCreate(title="Prepare deck", assigned_to=["hugo"]), "martial")
        with pytest.raises(ValidationError):
            await service.update_task(task.id, {"status": None}, "martial")
        return await service.get_task(task.id), await service.get_team_pulse()

    task, pulse = asyncio.run(scenario())

    assert task.status == "pending"
    assert [entry.open_task_count for entry in pulse if entry.member.id == "hugo"] == [1]
