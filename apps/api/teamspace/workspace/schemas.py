from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from teamspace.workspace.directory import Company, TeamMember


TaskPriority = Literal["low", "medium", "high"]
TaskStatus = Literal["pending", "in_progress", "completed"]
ProjectStatus = Literal["planning", "active", "on_hold", "completed", "cancelled"]
ProjectStage = Literal["qualification", "proposal", "negotiation", "closed_won", "closed_lost"]
MemberRole = Literal["owner", "member"]
DocumentType = Literal["pdf", "doc", "sheet", "slide", "image", "other"]
TemplateCategory = Literal["introduction", "followup", "proposal", "meeting", "onboarding", "general"]
ActivityAction = Literal["created", "updated", "contacted", "signed", "mentioned", "completed"]
ActivityTargetType = Literal["company", "contact", "task", "deal", "project"]
NotificationType = Literal["mention", "task_assigned", "task_due", "client_urgent", "deal_won"]
MentionSource = Literal["activity", "project_note", "task_comment"]

PROJECT_STAGES: tuple[ProjectStage, ...] = ("qualification", "proposal", "negotiation", "closed_won", "closed_lost")
CLOSED_STAGES = {"closed_won", "closed_lost"}


class StoredRead(BaseModel):
    id: str
    created_at: datetime
    updated_at: datetime | None = None


class TaskCreate(BaseModel):
    title: str
    description: str | None = None
    company_id: str | None = None
    company_name: str | None = None
    project_id: str | None = None
    assigned_to: list[str]
    assigned_by: str | None = None
    due_date: date | None = None
    priority: TaskPriority = "medium"
    status: TaskStatus = "pending"


class TaskUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    project_id: str | None = None
    assigned_to: list[str] | None = None
    due_date: date | None = None
    priority: TaskPriority | None = None
    status: TaskStatus | None = None


class TaskRead(StoredRead):
    title: str
    description: str | None = None
    company_id: str | None = None
    company_name: str | None = None
    project_id: str | None = None
    assigned_to: list[str]
    assigned_by: str
    due_date: date | None = None
    priority: TaskPriority
    status: TaskStatus


class ProjectCreate(BaseModel):
    title: str
    description: str | None = None
    company_id: str | None = None
    company_name: str | None = None
    status: ProjectStatus = "planning"
    stage: ProjectStage = "qualification"
    budget: float = 0.0
    spent: float = 0.0
    probability: int = 50
    progress: int = 0
    start_date: date | None = None
    end_date: date | None = None
    expected_close_date: date | None = None
    owner_id: str | None = None


class ProjectUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    status: ProjectStatus | None = None
    stage: ProjectStage | None = None
    budget: float | None = None
    spent: float | None = None
    probability: int | None = None
    progress: int | None = None
    start_date: date | None = None
    end_date: date | None = None
    expected_close_date: date | None = None
    owner_id: str | None = None


class ProjectRead(StoredRead):
    title: str
    description: str | None = None
    company_id: str | None = None
    company_name: str | None = None
    status: ProjectStatus
    stage: ProjectStage
    budget: float = 0.0
    spent: float = 0.0
    probability: int = 50
    progress: int = 0
    start_date: date | None = None
    end_date: date | None = None
    expected_close_date: date | None = None
    owner_id: str


class ProjectMemberCreate(BaseModel):
    project_id: str
    user_id: str
    role: MemberRole = "member"


class ProjectMemberUpdate(BaseModel):
    role: MemberRole | None = None


class ProjectMemberRead(StoredRead):
    project_id: str
    user_id: str
    role: MemberRole


class ProjectDocumentCreate(BaseModel):
    project_id: str
    name: str
    url: str
    type: DocumentType = "other"
    added_by: str


class ProjectDocumentUpdate(BaseModel):
    name: str | None = None
    url: str | None = None
    type: DocumentType | None = None


class ProjectDocumentRead(StoredRead):
    project_id: str
    name: str
    url: str
    type: DocumentType
    added_by: str


class ProjectNoteCreate(BaseModel):
    project_id: str
    author_id: str
    content: str


class ProjectNoteUpdate(BaseModel):
    content: str | None = None


class ProjectNoteRead(StoredRead):
    project_id: str
    author_id: str
    content: str
    mentions: list[str] = Field(default_factory=list)


class TaskCommentCreate(BaseModel):
    task_id: str
    user_id: str
    content: str


class TaskCommentUpdate(BaseModel):
    content: str | None = None


class TaskCommentRead(StoredRead):
    task_id: str
    user_id: str
    content: str
    mentions: list[str] = Field(default_factory=list)


class ProjectDetail(ProjectRead):
    members: list[ProjectMemberRead] = Field(default_factory=list)
    documents: list[ProjectDocumentRead] = Field(default_factory=list)
    notes: list[ProjectNoteRead] = Field(default_factory=list)


class EmailTemplateCreate(BaseModel):
    name: str
    subject: str
    body: str = ""
    category: TemplateCategory = "general"
    variables: list[str] = Field(default_factory=list)
    is_shared: bool = True
    created_by: str | None = None


class EmailTemplateUpdate(BaseModel):
    name: str | None = None
    subject: str | None = None
    body: str | None = None
    category: TemplateCategory | None = None
    variables: list[str] | None = None
    is_shared: bool | None = None


class EmailTemplateRead(StoredRead):
    name: str
    subject: str
    body: str = ""
    category: TemplateCategory
    variables: list[str] = Field(default_factory=list)
    is_shared: bool = True
    created_by: str


class TeamActivityCreate(BaseModel):
    user_id: str
    action: ActivityAction
    target_type: ActivityTargetType
    target_id: str
    target_name: str
    description: str | None = None
    mentioned_users: list[str] | None = None


class TeamActivityRead(BaseModel):
    id: str
    user_id: str
    action: ActivityAction
    target_type: ActivityTargetType
    target_id: str
    target_name: str
    description: str | None = None
    timestamp: datetime
    mentioned_users: list[str] | None = None


class NotificationCreate(BaseModel):
    user_id: str
    type: NotificationType
    title: str
    message: str
    link: str | None = None
    read: bool = False


class NotificationUpdate(BaseModel):
    read: bool | None = None


class NotificationRead(StoredRead):
    user_id: str
    type: NotificationType
    title: str
    message: str
    link: str | None = None
    read: bool = False


class ProjectMemberRequest(BaseModel):
    user_id: str
    role: MemberRole = "member"


class ProjectDocumentRequest(BaseModel):
    name: str
    url: str
    type: DocumentType = "other"


class ContentRequest(BaseModel):
    content: str


class ActivityLogRequest(BaseModel):
    action: ActivityAction
    target_type: ActivityTargetType
    target_id: str
    target_name: str
    description: str | None = None


class TeamPulseEntry(BaseModel):
    member: TeamMember
    latest_activity: TeamActivityRead | None = None
    open_task_count: int = 0


class UrgentClient(BaseModel):
    company: Company
    days_since_contact: int


class MentionItem(BaseModel):
    source: MentionSource
    id: str
    author_id: str
    content: str
    created_at: datetime
    target_type: ActivityTargetType
    target_id: str
    target_title: str | None = None
    company_id: str | None = None
    company_name: str | None = None
    link: str | None = None


class StageTotal(BaseModel):
    stage: ProjectStage
    count: int = 0
    value: float = 0.0


class PipelineAnalytics(BaseModel):
    stages: list[StageTotal]
    deal_count: int
    open_deal_count: int
    open_pipeline_value: float
    weighted_pipeline: float
    won_value: float
    task_count: int
    completed_task_count: int
    task_completion_ratio: float
    overdue_task_count: int
    window_days: int
    activity_counts: dict[str, int]


class SearchResults(BaseModel):
    companies: list[Company] = Field(default_factory=list)
    tasks: list[TaskRead] = Field(default_factory=list)
    team: list[TeamMember] = Field(default_factory=list)
