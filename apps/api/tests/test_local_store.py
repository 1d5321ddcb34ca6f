from __future__ import annotations

from pathlib import Path

import pytest

from teamspace.persistence.local_store import LocalStore, apply_params


@pytest.fixture()
def store() -> LocalStore:
    return LocalStore.from_url("sqlite+pysqlite:///:memory:")


def test_insert_assigns_prefixed_id_and_timestamp(store: LocalStore) -> None:
    [task] = store.execute("tasks", None, "POST", {"title": "Call Acme", "assigned_to": ["hugo"]})
    [entry] = store.execute("team_activity", None, "POST", {"user_id": "hugo", "action": "created"})

    assert task["id"].startswith("task-")
    assert task["created_at"]
    assert entry["id"].startswith("act-")
    assert entry["timestamp"]
    assert "created_at" not in entry


def test_insert_keeps_supplied_id_and_timestamp(store: LocalStore) -> None:
    [row] = store.insert("projects", [{"id": "project-1", "created_at": "2024-01-01T00:00:00+00:00"}])

    assert row == {"id": "project-1", "created_at": "2024-01-01T00:00:00+00:00"}
    assert store.select("projects", "project-1") == [row]


def test_select_filters_orders_and_limits(store: LocalStore) -> None:
    store.insert(
        "tasks",
        [
            {"id": "t1", "status": "pending", "assigned_to": ["hugo"], "created_at": "2024-03-01T09:00:00+00:00"},
            {"id": "t2", "status": "completed", "assigned_to": ["hugo", "mathis"], "created_at": "2024-03-03T09:00:00+00:00"},
            {"id": "t3", "status": "pending", "assigned_to": ["mathis"], "created_at": "2024-03-02T09:00:00+00:00"},
        ],
    )

    assert [row["id"] for row in store.select("tasks", params={"status": "eq.pending"})] == ["t1", "t3"]
    assert [row["id"] for row in store.select("tasks", params={"status": "neq.pending"})] == ["t2"]
    assert [row["id"] for row in store.select("tasks", params={"assigned_to": "cs.{hugo}"})] == ["t1", "t2"]
    assert [row["id"] for row in store.select("tasks", params={"id": "in.(t1,t3)"})] == ["t1", "t3"]
    newest = store.select("tasks", params={"order": "created_at.desc", "limit": "2"})
    assert [row["id"] for row in newest] == ["t2", "t3"]
    assert [row["id"] for row in store.select("tasks", params={"order": "created_at.asc", "offset": "1"})] == ["t3", "t2"]


def test_boolean_and_null_filters(store: LocalStore) -> None:
    store.insert(
        "notifications",
        [
            {"id": "n1", "user_id": "hugo", "read": False, "link": None},
            {"id": "n2", "user_id": "hugo", "read": True, "link": "/tasks/t1"},
        ],
    )

    assert [row["id"] for row in store.select("notifications", params={"read": "eq.false"})] == ["n1"]
    assert [row["id"] for row in store.select("notifications", params={"link": "is.null"})] == ["n1"]


def test_descending_order_breaks_ties_newest_insert_first() -> None:
    rows = [{"id": "a", "ts": "2024-01-01T00:00:00"}, {"id": "b", "ts": "2024-01-01T00:00:00"}]

    assert [row["id"] for row in apply_params(rows, {"order": "ts.desc"})] == ["b", "a"]


def test_unsupported_operator_is_rejected() -> None:
    with pytest.raises(ValueError):
        apply_params([{"id": "a"}], {"id": "like.a*"})


def test_update_merges_and_reports_missing_rows(store: LocalStore) -> None:
    store.insert("projects", [{"id": "p1", "title": "Acme", "stage": "proposal"}])

    [updated] = store.execute("projects", "p1", "PATCH", {"stage": "closed_won"})

    assert updated["title"] == "Acme"
    assert updated["stage"] == "closed_won"
    assert store.select("projects", "p1")[0]["stage"] == "closed_won"
    assert store.execute("projects", "missing", "PATCH", {"stage": "proposal"}) == []


def test_update_with_filters_touches_matching_rows_only(store: LocalStore) -> None:
    store.insert(
        "notifications",
        [
            {"id": "n1", "user_id": "hugo", "read": False},
            {"id": "n2", "user_id": "mathis", "read": False},
        ],
    )

    updated = store.update("notifications", None, {"read": True}, {"user_id": "eq.hugo"})

    assert [row["id"] for row in updated] == ["n1"]
    assert store.select("notifications", "n2")[0]["read"] is False


def test_delete_is_idempotent(store: LocalStore) -> None:
    store.insert("task_comments", [{"id": "c1", "task_id": "t1"}, {"id": "c2", "task_id": "t2"}])

    assert [row["id"] for row in store.execute("task_comments", "c1", "DELETE")] == ["c1"]
    assert store.execute("task_comments", "c1", "DELETE") == []
    assert [row["id"] for row in store.delete("task_comments", None, {"task_id": "eq.t2"})] == ["c2"]
    assert store.select("task_comments") == []


def test_collections_survive_a_new_store_instance(tmp_path: Path) -> None:
    url = f"sqlite+pysqlite:///{tmp_path / 'workspace.db'}"
    LocalStore.from_url(url).insert("email_templates", [{"id": "tpl-1", "name": "Intro"}])

    rows = LocalStore.from_url(url).select("email_templates")

    assert [row["id"] for row in rows] == ["tpl-1"]
    assert rows[0]["name"] == "Intro"


def test_unknown_verb_is_rejected(store: LocalStore) -> None:
    with pytest.raises(ValueError):
        store.execute("tasks", None, "PUT", {})


def test_clear_empties_one_collection_or_all(store: LocalStore) -> None:
    store.insert("tasks", [{"id": "t1"}])
    store.insert("projects", [{"id": "p1"}])

    store.clear("tasks")
    assert store.select("tasks") == []
    assert [row["id"] for row in store.select("projects")] == ["p1"]

    store.clear()
    assert store.select("projects") == []
