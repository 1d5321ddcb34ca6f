from __future__ import annotations

import asyncio

import pytest

from teamspace.core.config import Settings
from teamspace.core.events import WorkspaceEventBus
from teamspace.persistence.local_store import LocalStore
from teamspace.workspace.activity import ActivityRecorder
from teamspace.workspace.context import WorkspaceContext


@pytest.fixture()
def context() -> WorkspaceContext:
    settings = Settings(_env_file=None, remote_api_url=None, remote_api_key=None, recent_activity_limit=3)
    return WorkspaceContext.create(
        settings,
        local_store=LocalStore.from_url("sqlite+pysqlite:///:memory:"),
        bus=WorkspaceEventBus(),
    )


@pytest.fixture()
def recorder(context: WorkspaceContext) -> ActivityRecorder:
    return ActivityRecorder(context)


def test_append_stamps_id_and_timestamp(recorder: ActivityRecorder) -> None:
    entry = asyncio.run(
        recorder.append("hugo", "contacted", "company", "company-1", "Acme", description="Intro call, @Mathis joins")
    )

    assert entry.id.startswith("act-")
    assert entry.timestamp is not None
    assert entry.user_id == "hugo"
    assert entry.mentioned_users is None


def test_recent_is_newest_first_and_limited(context: WorkspaceContext, recorder: ActivityRecorder) -> None:
    context.gateway.local_store.insert(
        "team_activity",
        [
            {
                "id": f"act-{index}",
                "user_id": "hugo",
                "action": "updated",
                "target_type": "task",
                "target_id": f"task-{index}",
                "target_name": f"Task {index}",
                "timestamp": f"2024-05-0{index}T10:00:00+00:00",
            }
            for index in range(1, 6)
        ],
    )

    async def scenario():
        return await recorder.recent(), await recorder.recent(limit=5)

    default, wider = asyncio.run(scenario())

    assert [entry.id for entry in default] == ["act-5", "act-4", "act-3"]
    assert len(wider) == 5


def test_mentioning_and_target_feeds(recorder: ActivityRecorder) -> None:
    async def scenario():
        await recorder.append("martial", "contacted", "company", "company-1", "Acme", "Call", mentioned_users=["hugo"])
        await recorder.append("hugo", "updated", "task", "task-1", "Prepare deck")
        await recorder.append("mathis", "contacted", "company", "company-1", "Acme", "Follow-up")
        return (
            await recorder.mentioning("hugo"),
            await recorder.mentioning("mathis"),
            await recorder.for_target("company", "company-1"),
            await recorder.all(),
        )

    hugo, mathis, company, everything = asyncio.run(scenario())

    assert [entry.user_id for entry in hugo] == ["martial"]
    assert mathis == []
    assert [entry.description for entry in company] == ["Follow-up", "Call"]
    assert len(everything) == 3


def test_mentioned_users_are_deduplicated(recorder: ActivityRecorder) -> None:
    entry = asyncio.run(
        recorder.append("hugo", "mentioned", "deal", "project-1", "Acme", mentioned_users=["mathis", "mathis", "martial"])
    )

    assert entry.mentioned_users == ["mathis", "martial"]
