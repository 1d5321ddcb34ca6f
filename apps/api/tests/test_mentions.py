from __future__ import annotations

from teamspace.workspace.directory import DEFAULT_ROSTER, TeamMember, TeamRoster
from teamspace.workspace.mentions import extract_mentions


def test_resolves_names_case_insensitively_in_first_mention_order() -> None:
    text = "@hugo can you sync with @Mathis? cc @HUGO"

    assert extract_mentions(text, DEFAULT_ROSTER) == ["hugo", "mathis"]


def test_resolves_member_ids() -> None:
    roster = TeamRoster([TeamMember(id="mk", name="Martial", email="martial@lexia.fr", role="Sales Director")])

    assert extract_mentions("ping @mk and @martial", roster) == ["mk"]


def test_unknown_tokens_are_dropped() -> None:
    assert extract_mentions("@nobody please check with @Martial", DEFAULT_ROSTER) == ["martial"]


def test_empty_text_has_no_mentions() -> None:
    assert extract_mentions(None, DEFAULT_ROSTER) == []
    assert extract_mentions("", DEFAULT_ROSTER) == []
    assert extract_mentions("no handles here", DEFAULT_ROSTER) == []


def test_id_match_wins_over_another_members_name() -> None:
    roster = TeamRoster(
        [
            TeamMember(id="alex", name="Sam", email="alex@lexia.fr", role="AE"),
            TeamMember(id="sam", name="Alex", email="sam@lexia.fr", role="AE"),
        ]
    )

    assert extract_mentions("@sam", roster) == ["sam"]
    assert extract_mentions("@alex", roster) == ["alex"]


def test_trailing_punctuation_does_not_break_resolution() -> None:
    assert extract_mentions("Thanks @Hugo, and @martial.", DEFAULT_ROSTER) == ["hugo", "martial"]
