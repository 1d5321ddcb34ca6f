from __future__ import annotations

import logging

from teamspace.metrics import observe_activity_record
from teamspace.workspace.context import WorkspaceContext
from teamspace.workspace.schemas import ActivityAction, ActivityTargetType, TeamActivityRead
from teamspace.workspace.stores import ActivityLogStore


logger = logging.getLogger("teamspace.workspace.activity")

NEWEST_FIRST = "timestamp.desc"


class ActivityRecorder:
    """Append-only team activity log.

    Every feed (dashboard activity, company timeline, mention inbox) is a read
    over this one collection; nothing else stores the same event.
    """

    def __init__(self, context: WorkspaceContext) -> None:
        self.context = context
        self._store = ActivityLogStore(context)

    async def append(
        self,
        actor_id: str,
        action: ActivityAction,
        target_type: ActivityTargetType,
        target_id: str,
        target_name: str,
        description: str | None = None,
        mentioned_users: list[str] | None = None,
    ) -> TeamActivityRead:
        record = await self._store.create(
            {
                "user_id": actor_id,
                "action": action,
                "target_type": target_type,
                "target_id": target_id,
                "target_name": target_name,
                "description": description,
                "mentioned_users": mentioned_users or None,
            }
        )
        observe_activity_record(action)
        logger.info(
            "activity.recorded",
            extra={"actor_id": actor_id, "entity_id": target_id, "collection": target_type},
        )
        return record

    async def recent(self, limit: int | None = None) -> list[TeamActivityRead]:
        resolved = limit if limit is not None else self.context.settings.recent_activity_limit
        return await self._store.list(order=NEWEST_FIRST, limit=resolved)

    async def mentioning(self, user_id: str) -> list[TeamActivityRead]:
        return await self._store.list({"mentioned_users": user_id}, order=NEWEST_FIRST)

    async def for_target(self, target_type: ActivityTargetType, target_id: str) -> list[TeamActivityRead]:
        return await self._store.list({"target_type": target_type, "target_id": target_id}, order=NEWEST_FIRST)

    async def all(self) -> list[TeamActivityRead]:
        return await self._store.list(order=NEWEST_FIRST)
