from datetime import datetime, timedelta, timezone

import pytest

from genesis.sessions.schema import (
    DEFAULT_TITLE,
    Message,
    Role,
    Session,
    ensure_shape,
)
from genesis.sessions.store import SessionStore
from genesis.storage import KEY_ACTIVE_SESSION, KEY_SESSIONS, MemoryStore


class TestEnsureShape:
    def test_fills_missing_fields(self):
        session = ensure_shape({})
        assert session.id
        assert session.title == DEFAULT_TITLE
        assert session.messages == []
        assert session.updated_at >= session.created_at

    def test_idempotent(self):
        raw = {
            "title": "  spaced   out  ",
            "messages": [{"role": "model", "text": None}, {"text": 5}, "junk"],
        }
        once = ensure_shape(raw)
        twice = ensure_shape(once)
        assert twice == once
        assert ensure_shape(twice.to_record()) == once

    def test_coerces_messages(self):
        session = ensure_shape(
            {
                "id": "s1",
                "messages": [
                    {"role": "assistant", "text": "hi"},
                    {"role": "system", "text": None},
                    42,
                ],
            }
        )
        assert [m.role for m in session.messages] == [Role.ASSISTANT, Role.USER]
        assert session.messages[1].text == ""

    def test_duplicate_message_ids_are_replaced(self):
        session = ensure_shape(
            {"messages": [{"id": "m", "text": "a"}, {"id": "m", "text": "b"}]}
        )
        ids = [m.id for m in session.messages]
        assert ids[0] == "m"
        assert len(set(ids)) == 2

    def test_updated_at_never_before_created_at(self):
        created = datetime(2024, 5, 1, tzinfo=timezone.utc)
        session = ensure_shape(
            {"createdAt": created.isoformat(), "updatedAt": (created - timedelta(days=1)).isoformat()}
        )
        assert session.updated_at == session.created_at == created

    def test_accepts_js_style_timestamps(self):
        session = ensure_shape(
            {"createdAt": "2024-01-01T10:00:00.000Z", "updatedAt": 1704103200000}
        )
        assert session.created_at == datetime(2024, 1, 1, 10, tzinfo=timezone.utc)
        assert session.updated_at == datetime(2024, 1, 1, 10, tzinfo=timezone.utc)

    def test_garbage_timestamp_falls_back(self):
        session = ensure_shape({"createdAt": "yesterday-ish"})
        assert session.created_at.tzinfo is not None

    def test_title_truncated(self):
        assert len(ensure_shape({"title": "x" * 200}).title) == 80

    def test_record_uses_camel_case(self):
        record = ensure_shape({"id": "s1"}).to_record()
        assert set(record) == {"id", "title", "createdAt", "updatedAt", "messages"}


class TestSessionStore:
    def test_load_all_empty(self, store):
        assert store.load_all() == []

    @pytest.mark.parametrize("raw", ["{not json", '"a string"', '{"a": 1}', "42"])
    def test_load_all_malformed_degrades_to_empty(self, raw):
        store = SessionStore(MemoryStore({KEY_SESSIONS: raw}))
        assert store.load_all() == []

    def test_load_all_skips_non_object_entries(self):
        store = SessionStore(MemoryStore({KEY_SESSIONS: '[1, {"id": "ok"}, null]'}))
        assert [s.id for s in store.load_all()] == ["ok"]

    def test_create_new_session_not_persisted(self, store):
        session = store.create_new_session("Hello")
        assert session.title == "Hello"
        assert session.created_at == session.updated_at
        assert store.load_all() == []

    def test_create_new_session_unique_ids(self, store):
        ids = {store.create_new_session().id for _ in range(50)}
        assert len(ids) == 50

    def test_upsert_then_get_by_id(self, store):
        raw = {"id": "abc", "title": "T", "messages": [{"role": "user", "text": "q"}]}
        saved = store.upsert_session(raw)
        assert store.get_by_id("abc") == saved
        assert saved == ensure_shape(saved)

    def test_upsert_prepends_new_and_replaces_in_place(self, store):
        first = store.upsert_session(store.create_new_session("first"))
        second = store.upsert_session(store.create_new_session("second"))
        assert [s.id for s in store.load_all()] == [second.id, first.id]

        first.title = "renamed"
        store.upsert_session(first)
        assert [s.title for s in store.load_all()] == ["second", "renamed"]

    def test_get_by_id_missing(self, store):
        assert store.get_by_id("nope") is None

    def test_rename_truncates_to_80(self, store):
        session = store.upsert_session(store.create_new_session())
        renamed = store.rename(session.id, "y" * 200)
        assert renamed.title == "y" * 80
        assert store.get_by_id(session.id).title == "y" * 80
        assert renamed.updated_at >= session.updated_at

    def test_rename_blank_uses_default(self, store):
        session = store.upsert_session(store.create_new_session("x"))
        assert store.rename(session.id, "   ").title == DEFAULT_TITLE

    def test_rename_keeps_inner_spacing(self, store):
        session = store.upsert_session(store.create_new_session())
        title = "  a  b" + "c" * 100
        renamed = store.rename(session.id, title)
        assert renamed.title == ("a  b" + "c" * 100)[:80]
        assert len(renamed.title) == 80

    def test_rename_missing(self, store):
        assert store.rename("nope", "x") is None

    def test_add_message(self, store):
        session = store.upsert_session(store.create_new_session())
        store.add_message(session.id, Role.USER, "one")
        updated = store.add_message(session.id, "assistant", None)
        assert [m.text for m in updated.messages] == ["one", ""]
        assert [m.role for m in updated.messages] == [Role.USER, Role.ASSISTANT]
        assert updated.updated_at >= session.updated_at
        assert len({m.id for m in updated.messages}) == 2

    def test_add_message_explicit_ts(self, store):
        session = store.upsert_session(store.create_new_session())
        ts = datetime(2030, 1, 1, tzinfo=timezone.utc)
        updated = store.add_message(session.id, Role.USER, "later", ts=ts)
        assert updated.messages[-1].ts == ts
        assert updated.updated_at == ts

    def test_add_message_unknown_session(self, store):
        assert store.add_message("nope", Role.USER, "x") is None
        assert store.load_all() == []

    def test_delete_one_repoints_active(self, store):
        a = store.upsert_session(store.create_new_session("a"))
        b = store.upsert_session(store.create_new_session("b"))
        store.set_active_id(b.id)
        assert store.delete_one(b.id) is True
        assert store.get_active_id() == a.id

    def test_delete_one_keeps_other_active(self, store):
        a = store.upsert_session(store.create_new_session("a"))
        b = store.upsert_session(store.create_new_session("b"))
        store.set_active_id(a.id)
        store.delete_one(b.id)
        assert store.get_active_id() == a.id

    def test_delete_last_clears_pointer(self, store):
        a = store.upsert_session(store.create_new_session("a"))
        store.set_active_id(a.id)
        store.delete_one(a.id)
        assert store.get_active_id() is None

    def test_delete_one_missing(self, store):
        assert store.delete_one("nope") is False

    def test_delete_all(self, store, kv):
        a = store.upsert_session(store.create_new_session())
        store.set_active_id(a.id)
        store.delete_all_sessions()
        assert store.load_all() == []
        assert kv.get_string(KEY_ACTIVE_SESSION) == ""

    def test_set_active_unknown(self, store):
        assert store.set_active_id("nope") is False

    def test_ensure_after_delete_all(self, store):
        store.upsert_session(store.create_new_session())
        store.upsert_session(store.create_new_session())
        store.delete_all_sessions()

        session = store.ensure_at_least_one_session()
        sessions = store.load_all()
        assert len(sessions) == 1
        assert store.get_active_id() == session.id == sessions[0].id

    def test_ensure_repairs_dangling_pointer(self, store, kv):
        a = store.upsert_session(store.create_new_session("a"))
        kv.set_string(KEY_ACTIVE_SESSION, "gone")
        assert store.ensure_at_least_one_session().id == a.id
        assert store.get_active_id() == a.id

    def test_ensure_keeps_valid_pointer(self, store):
        a = store.upsert_session(store.create_new_session("a"))
        store.upsert_session(store.create_new_session("b"))
        store.set_active_id(a.id)
        assert store.ensure_at_least_one_session().id == a.id
        assert len(store.load_all()) == 2


def test_message_model_roundtrip_keeps_role_enum():
    message = Message.model_validate({"role": "assistant", "text": "x"})
    assert Message.model_validate(message.model_dump(mode="json")) == message


def test_session_accepts_snake_case_keys():
    session = Session.model_validate({"id": "s", "created_at": "2024-01-01T00:00:00+00:00"})
    assert session.created_at.year == 2024
