from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone

from teamspace.core.errors import RemoteError, TransportError
from teamspace.workspace.activity import ActivityRecorder
from teamspace.workspace.context import WorkspaceContext
from teamspace.workspace.schemas import (
    CLOSED_STAGES,
    PROJECT_STAGES,
    MentionItem,
    PipelineAnalytics,
    StageTotal,
    TeamActivityRead,
    TeamPulseEntry,
    UrgentClient,
)
from teamspace.workspace.stores import ProjectNoteStore, ProjectStore, TaskCommentStore, TaskStore


logger = logging.getLogger("teamspace.workspace.aggregation")


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def link_for(target_type: str, target_id: str) -> str:
    if target_type in {"company", "contact"}:
        return f"/company/{target_id}"
    if target_type == "task":
        return f"/tasks/{target_id}"
    return f"/projects/{target_id}"


class AggregationEngine:
    """Read-only dashboard views, recomputed on every call."""

    def __init__(
        self,
        context: WorkspaceContext,
        *,
        tasks: TaskStore,
        projects: ProjectStore,
        notes: ProjectNoteStore,
        comments: TaskCommentStore,
        activity: ActivityRecorder,
    ) -> None:
        self.context = context
        self._tasks = tasks
        self._projects = projects
        self._notes = notes
        self._comments = comments
        self._activity = activity

    async def team_pulse(self) -> list[TeamPulseEntry]:
        activities = await self._activity_log()
        tasks = await self._tasks.list()

        latest: dict[str, TeamActivityRead] = {}
        for entry in activities:
            current = latest.get(entry.user_id)
            if current is None or _aware(entry.timestamp) > _aware(current.timestamp):
                latest[entry.user_id] = entry

        open_counts: Counter[str] = Counter()
        for task in tasks:
            if task.status == "completed":
                continue
            for user_id in task.assigned_to:
                open_counts[user_id] += 1

        return [
            TeamPulseEntry(member=member, latest_activity=latest.get(member.id), open_task_count=open_counts[member.id])
            for member in self.context.roster
        ]

    async def urgent_clients(self, now: datetime | None = None) -> list[UrgentClient]:
        moment = _aware(now or datetime.now(timezone.utc))
        threshold = self.context.settings.stale_client_days
        companies = await self.context.directory.list_companies()

        urgent: list[UrgentClient] = []
        for company in companies:
            if company.entity_type != "client":
                continue
            days = (moment - _aware(company.last_contact_date)).days
            if days > threshold:
                urgent.append(UrgentClient(company=company, days_since_contact=days))

        urgent.sort(key=lambda item: _aware(item.company.last_contact_date))
        return urgent

    async def my_mentions(self, user_id: str) -> list[MentionItem]:
        activities = await self._activity_log(mentioning=user_id)
        notes = await self._notes.list({"mentions": user_id})
        comments = await self._comments.list({"mentions": user_id})
        projects = {project.id: project for project in await self._projects.list()} if notes else {}
        tasks = {task.id: task for task in await self._tasks.list()} if comments else {}

        items: list[MentionItem] = []
        for entry in activities:
            is_company = entry.target_type == "company"
            items.append(
                MentionItem(
                    source="activity",
                    id=entry.id,
                    author_id=entry.user_id,
                    content=entry.description or "",
                    created_at=entry.timestamp,
                    target_type=entry.target_type,
                    target_id=entry.target_id,
                    target_title=entry.target_name,
                    company_id=entry.target_id if is_company else None,
                    company_name=entry.target_name if is_company else None,
                    link=link_for(entry.target_type, entry.target_id),
                )
            )

        for note in notes:
            project = projects.get(note.project_id)
            items.append(
                MentionItem(
                    source="project_note",
                    id=note.id,
                    author_id=note.author_id,
                    content=note.content,
                    created_at=note.created_at,
                    target_type="project",
                    target_id=note.project_id,
                    target_title=project.title if project else None,
                    company_id=project.company_id if project else None,
                    company_name=project.company_name if project else None,
                    link=link_for("project", note.project_id),
                )
            )

        for comment in comments:
            task = tasks.get(comment.task_id)
            items.append(
                MentionItem(
                    source="task_comment",
                    id=comment.id,
                    author_id=comment.user_id,
                    content=comment.content,
                    created_at=comment.created_at,
                    target_type="task",
                    target_id=comment.task_id,
                    target_title=task.title if task else None,
                    company_id=task.company_id if task else None,
                    company_name=task.company_name if task else None,
                    link=link_for("task", comment.task_id),
                )
            )

        items.sort(key=lambda item: _aware(item.created_at), reverse=True)
        return items

    async def analytics(self, now: datetime | None = None) -> PipelineAnalytics:
        moment = _aware(now or datetime.now(timezone.utc))
        window_days = self.context.settings.analytics_window_days
        projects = await self._projects.list()
        tasks = await self._tasks.list()
        activities = await self._activity_log()

        stages = {stage: StageTotal(stage=stage) for stage in PROJECT_STAGES}
        open_value = 0.0
        weighted = 0.0
        won_value = 0.0
        open_deals = 0
        for project in projects:
            total = stages[project.stage]
            total.count += 1
            total.value += project.budget
            if project.stage == "closed_won":
                won_value += project.budget
            if project.stage in CLOSED_STAGES:
                continue
            open_deals += 1
            open_value += project.budget
            weighted += project.budget * (project.probability / 100)

        completed = 0
        overdue = 0
        for task in tasks:
            if task.status == "completed":
                completed += 1
            elif task.due_date is not None and task.due_date < moment.date():
                overdue += 1

        window_start = moment - timedelta(days=window_days)
        activity_counts = {member.id: 0 for member in self.context.roster}
        for entry in activities:
            if entry.user_id in activity_counts and _aware(entry.timestamp) >= window_start:
                activity_counts[entry.user_id] += 1

        return PipelineAnalytics(
            stages=[stages[stage] for stage in PROJECT_STAGES],
            deal_count=len(projects),
            open_deal_count=open_deals,
            open_pipeline_value=open_value,
            weighted_pipeline=weighted,
            won_value=won_value,
            task_count=len(tasks),
            completed_task_count=completed,
            task_completion_ratio=(completed / len(tasks)) if tasks else 0.0,
            overdue_task_count=overdue,
            window_days=window_days,
            activity_counts=activity_counts,
        )

    async def _activity_log(self, mentioning: str | None = None) -> list[TeamActivityRead]:
        # The one place a read failure is absorbed: views fall back to an empty log.
        try:
            if mentioning is not None:
                return await self._activity.mentioning(mentioning)
            return await self._activity.all()
        except (TransportError, RemoteError) as exc:
            logger.warning("aggregation.activity_log_unavailable", extra={"error": str(exc)})
            return []
