from __future__ import annotations

import re
from collections.abc import Iterable

from teamspace.workspace.directory import TeamMember


MENTION_RE = re.compile(r"@(\w+)")


def extract_mentions(text: str | None, roster: Iterable[TeamMember]) -> list[str]:
    """Resolve ``@token`` references in ``text`` to roster member ids.

    A token matches a member when it equals the member's display name or id,
    ignoring case. Unknown tokens are dropped; each id appears once, in order of
    first mention.
    """
    if not text:
        return []

    members = list(roster)
    lookup: dict[str, str] = {member.id.casefold(): member.id for member in members}
    for member in members:
        lookup.setdefault(member.name.casefold(), member.id)

    resolved: list[str] = []
    for token in MENTION_RE.findall(text):
        user_id = lookup.get(token.casefold())
        if user_id is not None and user_id not in resolved:
            resolved.append(user_id)
    return resolved
