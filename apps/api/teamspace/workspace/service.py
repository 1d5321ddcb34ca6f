from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, time, timedelta, timezone
from typing import Any

from pydantic import BaseModel

from teamspace.core.events import Channel
from teamspace.workspace.activity import ActivityRecorder
from teamspace.workspace.aggregation import AggregationEngine, link_for
from teamspace.workspace.context import WorkspaceContext
from teamspace.workspace.directory import CalendarEvent, Company
from teamspace.workspace.export import deals_to_csv, tasks_to_csv
from teamspace.workspace.mentions import extract_mentions
from teamspace.workspace.schemas import (
    ActivityAction,
    ActivityTargetType,
    EmailTemplateCreate,
    EmailTemplateRead,
    EmailTemplateUpdate,
    MentionItem,
    NotificationRead,
    NotificationType,
    PipelineAnalytics,
    ProjectCreate,
    ProjectDetail,
    ProjectDocumentRead,
    ProjectDocumentRequest,
    ProjectMemberRead,
    ProjectNoteRead,
    ProjectRead,
    ProjectUpdate,
    SearchResults,
    TaskCommentRead,
    TaskCreate,
    TaskRead,
    TaskUpdate,
    TeamActivityRead,
    TeamPulseEntry,
    UrgentClient,
)
from teamspace.workspace.stores import (
    EmailTemplateStore,
    NotificationStore,
    ProjectDocumentStore,
    ProjectMemberStore,
    ProjectNoteStore,
    ProjectStore,
    TaskCommentStore,
    TaskStore,
)


logger = logging.getLogger("teamspace.workspace.service")

SEARCH_LIMIT = 5


def _snippet(text: str, length: int = 120) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= length else f"{flat[: length - 3]}..."


def _is_empty_patch(patch: BaseModel | Mapping[str, Any]) -> bool:
    if isinstance(patch, BaseModel):
        return not patch.model_fields_set
    return not patch


class WorkspaceService:
    """Entry point for workspace actions.

    A mutation goes to its store first; once it succeeds, exactly one activity
    record is appended, recipients are notified and the affected channels are
    published so other views can re-query.
    """

    def __init__(self, context: WorkspaceContext) -> None:
        self.context = context
        self.tasks = TaskStore(context)
        self.projects = ProjectStore(context)
        self.members = ProjectMemberStore(context)
        self.documents = ProjectDocumentStore(context)
        self.notes = ProjectNoteStore(context)
        self.comments = TaskCommentStore(context)
        self.templates = EmailTemplateStore(context)
        self.notifications = NotificationStore(context)
        self.activity = ActivityRecorder(context)
        self.aggregation = AggregationEngine(
            context,
            tasks=self.tasks,
            projects=self.projects,
            notes=self.notes,
            comments=self.comments,
            activity=self.activity,
        )

    # Tasks

    async def get_tasks(self, filters: Mapping[str, Any] | None = None) -> list[TaskRead]:
        return await self.tasks.list(filters)

    async def get_task(self, task_id: str) -> TaskRead:
        return await self.tasks.get(task_id)

    async def get_my_tasks(self, user_id: str) -> list[TaskRead]:
        tasks = await self.tasks.list({"assigned_to": user_id})
        return [task for task in tasks if task.status != "completed"]

    async def get_tasks_by_company(self, company_id: str) -> list[TaskRead]:
        return await self.tasks.list({"company_id": company_id})

    async def add_task(self, dto: TaskCreate, actor_id: str) -> TaskRead:
        updates: dict[str, Any] = {}
        if dto.assigned_by is None:
            updates["assigned_by"] = actor_id
        if dto.company_id:
            # Snapshot: the name is copied now and never follows later renames.
            company = await self.context.directory.get_company(dto.company_id)
            if company is not None:
                updates["company_name"] = company.name
        task = await self.tasks.create(dto.model_copy(update=updates) if updates else dto)

        await self.activity.append(
            actor_id,
            "created",
            "task",
            task.id,
            task.title,
            description=f"For {task.company_name}" if task.company_name else None,
        )
        assigner = self.context.roster.name_of(task.assigned_by)
        for user_id in task.assigned_to:
            if user_id == task.assigned_by:
                continue
            await self._notify(
                user_id,
                "task_assigned",
                "New task assigned",
                f"{assigner} assigned you: {task.title}",
                link_for("company", task.company_id) if task.company_id else link_for("task", task.id),
            )
        self._publish(Channel.TASKS, Channel.ACTIVITY, task_id=task.id)
        return task

    async def update_task(self, task_id: str, patch: TaskUpdate | Mapping[str, Any], actor_id: str) -> TaskRead:
        before = await self.tasks.get(task_id)
        if _is_empty_patch(patch):
            return before
        task = await self.tasks.update(task_id, patch)

        if task.status == "completed" and before.status != "completed":
            await self.activity.append(actor_id, "completed", "task", task.id, task.title)
        else:
            await self.activity.append(actor_id, "updated", "task", task.id, task.title)

        assigner = self.context.roster.name_of(actor_id)
        for user_id in task.assigned_to:
            if user_id in before.assigned_to or user_id == actor_id:
                continue
            await self._notify(
                user_id,
                "task_assigned",
                "New task assigned",
                f"{assigner} assigned you: {task.title}",
                link_for("task", task.id),
            )
        self._publish(Channel.TASKS, Channel.ACTIVITY, task_id=task.id)
        return task

    async def delete_task(self, task_id: str) -> None:
        await self.tasks.delete(task_id)
        await self.comments.delete_where({"task_id": task_id})
        self._publish(Channel.TASKS, Channel.TASK_COMMENTS, task_id=task_id)

    # Task comments

    async def get_task_comments(self, task_id: str) -> list[TaskCommentRead]:
        return await self.comments.list({"task_id": task_id})

    async def add_task_comment(self, task_id: str, content: str, actor_id: str) -> TaskCommentRead:
        task = await self.tasks.get(task_id)
        comment = await self.comments.create({"task_id": task.id, "user_id": actor_id, "content": content})
        await self.activity.append(actor_id, "created", "task", task.id, task.title, description=_snippet(comment.content))
        await self._notify_mentions(comment.mentions, actor_id, task.title, comment.content, link_for("task", task.id))
        self._publish(Channel.TASK_COMMENTS, Channel.ACTIVITY, task_id=task.id)
        return comment

    async def delete_task_comment(self, comment_id: str) -> None:
        await self.comments.delete(comment_id)
        self._publish(Channel.TASK_COMMENTS, comment_id=comment_id)

    # Projects

    async def get_projects(self, filters: Mapping[str, Any] | None = None) -> list[ProjectRead]:
        return await self.projects.list(filters)

    async def get_project_by_id(self, project_id: str) -> ProjectDetail:
        project = await self.projects.get(project_id)
        members = await self.members.list({"project_id": project_id})
        documents = await self.documents.list({"project_id": project_id})
        notes = await self.get_project_notes(project_id)
        return ProjectDetail(**dict(project), members=members, documents=documents, notes=notes)

    async def add_project(self, dto: ProjectCreate, actor_id: str) -> ProjectRead:
        updates: dict[str, Any] = {}
        if dto.owner_id is None:
            updates["owner_id"] = actor_id
        if dto.company_id:
            company = await self.context.directory.get_company(dto.company_id)
            if company is not None:
                updates["company_name"] = company.name
        project = await self.projects.create(dto.model_copy(update=updates) if updates else dto)
        await self.members.create({"project_id": project.id, "user_id": project.owner_id, "role": "owner"})

        await self.activity.append(
            actor_id,
            "created",
            "project",
            project.id,
            project.title,
            description=f"For {project.company_name}" if project.company_name else None,
        )
        self._publish(Channel.PROJECTS, Channel.PROJECT_MEMBERS, Channel.ACTIVITY, project_id=project.id)
        return project

    async def update_project(
        self,
        project_id: str,
        patch: ProjectUpdate | Mapping[str, Any],
        actor_id: str,
    ) -> ProjectRead:
        before = await self.projects.get(project_id)
        if _is_empty_patch(patch):
            return before
        project = await self.projects.update(project_id, patch)

        if project.stage == "closed_won" and before.stage != "closed_won":
            await self.activity.append(
                actor_id,
                "signed",
                "deal",
                project.id,
                project.title,
                description=f"Deal won: {project.budget:g}",
            )
            members = await self.members.list({"project_id": project.id})
            actor_name = self.context.roster.name_of(actor_id)
            for member in members:
                if member.user_id == actor_id:
                    continue
                await self._notify(
                    member.user_id,
                    "deal_won",
                    "Deal won",
                    f"{actor_name} closed {project.title}",
                    link_for("project", project.id),
                )
        else:
            await self.activity.append(actor_id, "updated", "project", project.id, project.title)
        self._publish(Channel.PROJECTS, Channel.ACTIVITY, project_id=project.id)
        return project

    async def delete_project(self, project_id: str) -> None:
        await self.projects.delete(project_id)
        await self.members.delete_where({"project_id": project_id})
        await self.documents.delete_where({"project_id": project_id})
        await self.notes.delete_where({"project_id": project_id})
        self._publish(
            Channel.PROJECTS,
            Channel.PROJECT_MEMBERS,
            Channel.PROJECT_DOCUMENTS,
            Channel.PROJECT_NOTES,
            project_id=project_id,
        )

    async def add_project_member(
        self,
        project_id: str,
        user_id: str,
        actor_id: str,
        role: str = "member",
    ) -> ProjectMemberRead:
        project = await self.projects.get(project_id)
        member = await self.members.create({"project_id": project.id, "user_id": user_id, "role": role})
        await self.activity.append(
            actor_id,
            "updated",
            "project",
            project.id,
            project.title,
            description=f"{self.context.roster.name_of(user_id)} joined the project",
        )
        self._publish(Channel.PROJECT_MEMBERS, Channel.ACTIVITY, project_id=project.id)
        return member

    async def remove_project_member(self, project_id: str, user_id: str, actor_id: str) -> None:
        project = await self.projects.get(project_id)
        removed = await self.members.delete_where({"project_id": project.id, "user_id": user_id})
        if removed:
            await self.activity.append(
                actor_id,
                "updated",
                "project",
                project.id,
                project.title,
                description=f"{self.context.roster.name_of(user_id)} left the project",
            )
        self._publish(Channel.PROJECT_MEMBERS, Channel.ACTIVITY, project_id=project.id)

    async def add_project_document(
        self,
        project_id: str,
        dto: ProjectDocumentRequest,
        actor_id: str,
    ) -> ProjectDocumentRead:
        project = await self.projects.get(project_id)
        document = await self.documents.create({**dto.model_dump(), "project_id": project.id, "added_by": actor_id})
        await self.activity.append(
            actor_id,
            "updated",
            "project",
            project.id,
            project.title,
            description=f"Document added: {document.name}",
        )
        self._publish(Channel.PROJECT_DOCUMENTS, Channel.ACTIVITY, project_id=project.id)
        return document

    async def delete_project_document(self, document_id: str, actor_id: str) -> None:
        document = await self.documents.find(document_id)
        if document is None:
            return
        await self.documents.delete(document_id)
        project = await self.projects.find(document.project_id)
        if project is not None:
            await self.activity.append(
                actor_id,
                "updated",
                "project",
                project.id,
                project.title,
                description=f"Document removed: {document.name}",
            )
        self._publish(Channel.PROJECT_DOCUMENTS, Channel.ACTIVITY, project_id=document.project_id)

    # Project notes

    async def get_project_notes(self, project_id: str) -> list[ProjectNoteRead]:
        notes = await self.notes.list({"project_id": project_id})
        return sorted(notes, key=lambda note: note.created_at, reverse=True)

    async def add_project_note(self, project_id: str, content: str, actor_id: str) -> ProjectNoteRead:
        project = await self.projects.get(project_id)
        note = await self.notes.create({"project_id": project.id, "author_id": actor_id, "content": content})
        await self.activity.append(
            actor_id,
            "created",
            "project",
            project.id,
            project.title,
            description=_snippet(note.content),
        )
        await self._notify_mentions(note.mentions, actor_id, project.title, note.content, link_for("project", project.id))
        self._publish(Channel.PROJECT_NOTES, Channel.ACTIVITY, project_id=project.id)
        return note

    async def delete_project_note(self, note_id: str) -> None:
        await self.notes.delete(note_id)
        self._publish(Channel.PROJECT_NOTES, note_id=note_id)

    # Email templates

    async def get_email_templates(self, category: str | None = None) -> list[EmailTemplateRead]:
        return await self.templates.list({"category": category})

    async def add_email_template(self, dto: EmailTemplateCreate, actor_id: str) -> EmailTemplateRead:
        template = await self.templates.create(dto.model_copy(update={"created_by": dto.created_by or actor_id}))
        self._publish(Channel.EMAIL_TEMPLATES, template_id=template.id)
        return template

    async def update_email_template(
        self,
        template_id: str,
        patch: EmailTemplateUpdate | Mapping[str, Any],
    ) -> EmailTemplateRead:
        template = await self.templates.update(template_id, patch)
        self._publish(Channel.EMAIL_TEMPLATES, template_id=template.id)
        return template

    async def delete_email_template(self, template_id: str) -> None:
        await self.templates.delete(template_id)
        self._publish(Channel.EMAIL_TEMPLATES, template_id=template_id)

    # Activity

    async def log_activity(
        self,
        actor_id: str,
        action: ActivityAction,
        target_type: ActivityTargetType,
        target_id: str,
        target_name: str,
        description: str | None = None,
    ) -> TeamActivityRead:
        mentioned = extract_mentions(description, self.context.roster)
        entry = await self.activity.append(
            actor_id,
            action,
            target_type,
            target_id,
            target_name,
            description=description,
            mentioned_users=mentioned,
        )
        await self._notify_mentions(mentioned, actor_id, target_name, description or "", link_for(target_type, target_id))
        self._publish(Channel.ACTIVITY, activity_id=entry.id)
        return entry

    async def get_recent_activity(self, limit: int | None = None) -> list[TeamActivityRead]:
        return await self.activity.recent(limit)

    async def get_team_activity(self) -> list[TeamActivityRead]:
        return await self.activity.all()

    async def get_activity_for(self, target_type: ActivityTargetType, target_id: str) -> list[TeamActivityRead]:
        return await self.activity.for_target(target_type, target_id)

    # Notifications

    async def get_my_notifications(self, user_id: str) -> list[NotificationRead]:
        notifications = await self.notifications.list({"user_id": user_id})
        notifications.sort(key=lambda item: item.created_at, reverse=True)
        return notifications[: self.context.settings.notifications_limit]

    async def get_unread_count(self, user_id: str) -> int:
        return len(await self.notifications.list({"user_id": user_id, "read": False}))

    async def mark_as_read(self, notification_id: str) -> NotificationRead:
        notification = await self.notifications.update(notification_id, {"read": True})
        self._publish(Channel.NOTIFICATIONS, notification_id=notification.id)
        return notification

    async def mark_all_as_read(self, user_id: str) -> int:
        updated = await self.notifications.update_where({"user_id": user_id, "read": False}, {"read": True})
        self._publish(Channel.NOTIFICATIONS, user_id=user_id)
        return len(updated)

    # Views

    async def get_team_pulse(self) -> list[TeamPulseEntry]:
        return await self.aggregation.team_pulse()

    async def get_urgent_clients(self, now: datetime | None = None) -> list[UrgentClient]:
        return await self.aggregation.urgent_clients(now)

    async def get_my_mentions(self, user_id: str) -> list[MentionItem]:
        return await self.aggregation.my_mentions(user_id)

    async def get_analytics(self, now: datetime | None = None) -> PipelineAnalytics:
        return await self.aggregation.analytics(now)

    async def get_today_events(self, now: datetime | None = None) -> list[CalendarEvent]:
        moment = now or datetime.now(timezone.utc)
        start = datetime.combine(moment.date(), time.min, tzinfo=moment.tzinfo or timezone.utc)
        events = await self.context.calendar.list_events(start, start + timedelta(days=1))
        return sorted(events, key=lambda event: event.start_time)

    async def search(self, query: str) -> SearchResults:
        needle = query.strip().casefold()
        if not needle:
            return SearchResults()

        companies: list[Company] = [
            company
            for company in await self.context.directory.list_companies()
            if needle in company.name.casefold()
            or any(needle in contact.name.casefold() for contact in company.contacts)
        ]
        tasks = [
            task
            for task in await self.tasks.list()
            if needle in task.title.casefold() or needle in (task.company_name or "").casefold()
        ]
        team = [member for member in self.context.roster if needle in member.name.casefold()]
        return SearchResults(companies=companies[:SEARCH_LIMIT], tasks=tasks[:SEARCH_LIMIT], team=team)

    async def export_tasks_csv(self) -> str:
        return tasks_to_csv(await self.tasks.list())

    async def export_deals_csv(self) -> str:
        return deals_to_csv(await self.projects.list())

    # Internals

    async def _notify(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        link: str | None,
    ) -> NotificationRead:
        notification = await self.notifications.create(
            {"user_id": user_id, "type": notification_type, "title": title, "message": message, "link": link}
        )
        self._publish(Channel.NOTIFICATIONS, user_id=user_id)
        return notification

    async def _notify_mentions(
        self,
        mentioned: list[str],
        actor_id: str,
        target_name: str,
        content: str,
        link: str | None,
    ) -> None:
        actor_name = self.context.roster.name_of(actor_id)
        for user_id in mentioned:
            if user_id == actor_id:
                continue
            await self._notify(
                user_id,
                "mention",
                f"{actor_name} mentioned you",
                f'On {target_name}: "{_snippet(content)}"',
                link,
            )

    def _publish(self, *channels: Channel, **payload: Any) -> None:
        for channel in channels:
            self.context.bus.publish(channel, payload)
