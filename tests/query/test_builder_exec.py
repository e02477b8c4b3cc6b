from __future__ import annotations

from datetime import datetime, timezone

import pytest

from strata.connection.base import Connection
from strata.domain.context import Context
from strata.errors import ConstraintError, EngineError
from tests.sample_models import Post, Setting, User


def _users(ctx: Context, conn: Connection, *names: str) -> list[User]:
    return conn.query(User).create(ctx, *[User(name=n, email=f"{n}@example.com") for n in names])


def test_create_assigns_ids_and_timestamps(ctx: Context, conn: Connection) -> None:
    created = _users(ctx, conn, "ann", "bob", "cid")
    assert [u.id for u in created] == [1, 2, 3]
    for user in created:
        assert isinstance(user.created_at, datetime)
        assert user.updated_at is not None
        assert user.deleted_at is None
    assert conn.query(User).count(ctx) == 3


def test_create_clears_delete_marker(ctx: Context, conn: Connection) -> None:
    user = User(name="ann", deleted_at=datetime.now(timezone.utc))
    conn.query(User).create(ctx, user)
    assert user.deleted_at is None
    assert conn.query(User).find(ctx, user.id)[0].deleted_at is None


def test_create_with_explicit_and_string_keys(ctx: Context, conn: Connection) -> None:
    conn.query(Setting).create(ctx, Setting(key="theme", value="dark", enabled=True))
    setting = conn.query(Setting).first(ctx)
    assert setting == Setting(key="theme", value="dark", enabled=True)

    mixed = [User(id=10, name="ten"), User(name="next")]
    conn.query(User).create(ctx, *mixed)
    assert [u.id for u in mixed] == [10, 11]


def test_create_rejects_foreign_models(ctx: Context, conn: Connection) -> None:
    with pytest.raises(TypeError):
        conn.query(User).create(ctx, Post(title="x"))  # type: ignore[arg-type]
    assert conn.query(User).create(ctx) == []


def test_find_first_get_and_pluck(ctx: Context, conn: Connection) -> None:
    _users(ctx, conn, "ann", "bob", "cid")
    assert [u.name for u in conn.query(User).find(ctx, 1, 3)] == ["ann", "cid"]
    assert len(conn.query(User).find(ctx)) == 3
    assert conn.query(User).order_by("name", "DESC").first(ctx).name == "cid"
    assert conn.query(User).where("name = ?", "nobody").first(ctx) is None
    assert conn.query(User).order_by("id").pluck(ctx, "name") == ["ann", "bob", "cid"]
    page = conn.query(User).order_by("id").limit(1).offset(1).get(ctx)
    assert [u.name for u in page] == ["bob"]
    assert [u.name for u in conn.query(User).order_by("id").offset(2).get(ctx)] == ["cid"]


def test_find_ands_ids_with_every_or_group(ctx: Context, conn: Connection) -> None:
    _users(ctx, conn, "ann", "bob", "cid")
    found = conn.query(User).where("name = ?", "ann").or_where("name = ?", "bob").find(ctx, 2, 3)
    assert [u.name for u in found] == ["bob"]


def test_count_and_exists(ctx: Context, conn: Connection) -> None:
    assert conn.query(User).count(ctx) == 0
    assert not conn.query(User).exists(ctx)
    _users(ctx, conn, "ann", "bob", "cid")
    assert conn.query(User).where("name <> ?", "ann").count(ctx) == 2
    assert conn.query(User).limit(2).count(ctx) == 2
    assert conn.query(User).where({"name": "bob"}).exists(ctx)


def test_mass_update_returns_rows_affected(ctx: Context, conn: Connection) -> None:
    _users(ctx, conn, "ann", "bob", "cid")
    affected = conn.query(User).where_in("id", [1, 2]).update(ctx, {"name": "renamed"})
    assert affected == 2
    assert conn.query(User).where({"name": "renamed"}).count(ctx) == 2
    with pytest.raises(ValueError):
        conn.query(User).update(ctx, {})


def test_update_with_limit_touches_only_limited_rows(ctx: Context, conn: Connection) -> None:
    _users(ctx, conn, "ann", "bob", "cid")
    assert conn.query(User).order_by("id").limit(1).update(ctx, {"name": "first"}) == 1
    assert conn.query(User).find(ctx, 1)[0].name == "first"


def test_soft_delete_visibility(ctx: Context, conn: Connection) -> None:
    _users(ctx, conn, "ann", "bob")
    assert conn.query(User).where({"name": "ann"}).delete(ctx) == 1
    assert conn.query(User).find(ctx, 1) == []
    trashed = conn.query(User).unscoped().find(ctx, 1)
    assert trashed[0].deleted_at is not None
    # Already trashed rows are not deleted twice
    assert conn.query(User).where({"name": "ann"}).delete(ctx) == 0
    assert conn.query(User).count(ctx) == 1
    assert conn.query(User).unscoped().count(ctx) == 2


def test_unscoped_delete_and_force_delete_remove_rows(ctx: Context, conn: Connection) -> None:
    _users(ctx, conn, "ann", "bob", "cid")
    conn.query(User).where({"name": "ann"}).delete(ctx)
    assert conn.query(User).unscoped().where({"name": "bob"}).delete(ctx) == 1
    assert conn.query(User).where({"name": "ann"}).force_delete(ctx) == 1
    assert conn.query(User).unscoped().pluck(ctx, "name") == ["cid"]


def test_physical_delete_without_soft_delete_support(ctx: Context, conn: Connection) -> None:
    conn.query(Setting).create(ctx, Setting(key="a"), Setting(key="b"))
    assert conn.query(Setting).where({"key": "a"}).delete(ctx) == 1
    assert conn.query(Setting).pluck(ctx, "key") == ["b"]


def test_builder_resets_after_terminal_operations(ctx: Context, conn: Connection) -> None:
    _users(ctx, conn, "ann", "bob")
    builder = conn.query(User).where({"name": "ann"})
    assert builder.count(ctx) == 1
    assert builder.is_empty()
    assert builder.count(ctx) == 2


def test_builder_resets_after_failure(ctx: Context, conn: Connection) -> None:
    builder = conn.query(User).where("no_such_column = ?", 1)
    with pytest.raises(EngineError) as info:
        builder.get(ctx)
    assert info.value.operation == "get"
    assert info.value.model == "User"
    assert "no_such_column" in str(info.value)
    assert isinstance(info.value.__cause__, Exception)
    assert builder.is_empty()
    assert builder.get(ctx) == []


def test_terminal_operation_on_clone_leaves_original(ctx: Context, conn: Connection) -> None:
    _users(ctx, conn, "ann", "bob")
    original = conn.query(User).where({"name": "ann"})
    twin = original.clone()
    assert len(twin.get(ctx)) == 1
    assert twin.is_empty()
    assert not original.is_empty()
    assert [u.name for u in original.get(ctx)] == ["ann"]


def test_unique_violation_is_constraint_error(ctx: Context, conn: Connection) -> None:
    _users(ctx, conn, "ann")
    with pytest.raises(ConstraintError) as info:
        conn.query(User).create(ctx, User(name="dup", email="ann@example.com"))
    assert info.value.operation == "create"


def test_exec_and_raw(ctx: Context, conn: Connection) -> None:
    _users(ctx, conn, "ann", "bob")
    result = conn.query(User).exec(ctx, "UPDATE users SET name = upper(name)")
    assert result.rows_affected == 2
    rows = conn.query(User).raw("SELECT * FROM users WHERE name = ?", "BOB").get(ctx)
    assert [u.id for u in rows] == [2]
    assert conn.query(User).raw("SELECT * FROM users").count(ctx) == 2


def test_raw_update_and_delete_touch_only_selected_rows(ctx: Context, conn: Connection) -> None:
    _users(ctx, conn, "ann", "bob", "cid")
    affected = conn.query(User).raw("SELECT * FROM users WHERE id = ?", 2).update(
        ctx, {"name": "x"}
    )
    assert affected == 1
    assert conn.query(User).order_by("id").pluck(ctx, "name") == ["ann", "x", "cid"]

    assert conn.query(User).raw("SELECT * FROM users WHERE id = ?", 1).delete(ctx) == 1
    assert conn.query(User).pluck(ctx, "name") == ["x", "cid"]
    assert conn.query(User).raw("SELECT * FROM users WHERE id = ?", 1).delete(ctx) == 0

    removed = conn.query(User).raw("SELECT id FROM users WHERE name = ?", "cid").force_delete(ctx)
    assert removed == 1
    assert conn.query(User).unscoped().count(ctx) == 2
