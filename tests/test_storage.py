from datetime import timedelta

import pytest

from api.models import EventCreate, NoteCreate, NotePatch
from lib.error_handler import NotFoundError, PersistenceError, ValidationError

TEST_USER = '00000000-0000-0000-0000-000000000001'


def note_row():
    return NoteCreate(user_id=TEST_USER, content="tomorrow at 3pm dentist", note_type="calendar_event", hashtags=["#health"])


def event_row():
    return EventCreate(user_id=TEST_USER, title="🦷 Dentist", start_datetime="2025-09-30T15:00:00")


@pytest.mark.asyncio
async def test_create_note_with_event_is_one_rpc(storage, fake_supabase):
    fake_supabase.queue({"note": {"id": "n1"}, "event": {"id": "e1", "note_id": "n1"}})

    created = await storage.create_note_with_event(note_row(), event_row())

    assert created["event"]["note_id"] == "n1"
    assert len(fake_supabase.executed) == 1
    (function, params), _ = fake_supabase.executed[0].called("rpc")[0]
    assert function == "create_note_with_event"
    assert params["p_note"]["content"] == "tomorrow at 3pm dentist"
    assert params["p_event"]["start_datetime"] == "2025-09-30T15:00:00"
    assert params["p_event"]["color"] == "blue"
    assert "image_data" not in params["p_note"]


@pytest.mark.asyncio
async def test_create_note_with_event_without_rows_fails(storage, fake_supabase):
    fake_supabase.queue([])

    with pytest.raises(PersistenceError):
        await storage.create_note_with_event(note_row(), event_row())


@pytest.mark.asyncio
async def test_driver_error_becomes_persistence_error(storage, fake_supabase):
    fake_supabase.queue(RuntimeError("connection reset"))

    with pytest.raises(PersistenceError) as excinfo:
        await storage.create_note(note_row())
    assert excinfo.value.status_code == 500
    assert excinfo.value.user_message == "Internal server error"


@pytest.mark.asyncio
async def test_update_note_is_single_update(storage, fake_supabase):
    fake_supabase.queue([{"id": "n1", "is_favorite": True}])

    note = await storage.update_note("n1", TEST_USER, NotePatch(is_favorite=True, content="edited"))

    assert note["is_favorite"] is True
    assert len(fake_supabase.executed) == 1
    query = fake_supabase.executed[0]
    (row,), _ = query.called("update")[0]
    assert row["is_favorite"] is True
    assert row["content"] == "edited"
    assert "updated_at" in row
    assert "hashtags" not in row
    assert query.called("eq") == [(("id", "n1"), {}), (("user_id", TEST_USER), {})]


@pytest.mark.asyncio
async def test_update_note_without_fields(storage, fake_supabase):
    with pytest.raises(ValidationError):
        await storage.update_note("n1", TEST_USER, NotePatch())
    assert fake_supabase.executed == []


@pytest.mark.asyncio
async def test_update_missing_note(storage, fake_supabase):
    fake_supabase.queue([])

    with pytest.raises(NotFoundError):
        await storage.update_note("missing", TEST_USER, NotePatch(is_archived=True))


@pytest.mark.asyncio
async def test_delete_note_removes_its_events(storage, fake_supabase):
    fake_supabase.queue([{"id": "e1"}], [{"id": "n1"}])

    await storage.delete_note("n1", TEST_USER)

    events_query, notes_query = fake_supabase.executed
    assert events_query.table_name == "calendar_events"
    assert (("note_id", "n1"), {}) in events_query.called("eq")
    assert notes_query.table_name == "notes"
    assert (("id", "n1"), {}) in notes_query.called("eq")


@pytest.mark.asyncio
async def test_delete_missing_note(storage, fake_supabase):
    fake_supabase.queue([], [])

    with pytest.raises(NotFoundError):
        await storage.delete_note("missing", TEST_USER)


@pytest.mark.asyncio
async def test_delete_event_removes_originating_note(storage, fake_supabase):
    fake_supabase.queue([{"id": "e1", "note_id": "n1"}], [{"id": "n1"}])

    await storage.delete_event("e1", TEST_USER)

    assert [q.table_name for q in fake_supabase.executed] == ["calendar_events", "notes"]
    assert (("id", "n1"), {}) in fake_supabase.executed[1].called("eq")


@pytest.mark.asyncio
async def test_delete_missing_event(storage, fake_supabase):
    fake_supabase.queue([])

    with pytest.raises(NotFoundError):
        await storage.delete_event("missing", TEST_USER)
    assert len(fake_supabase.executed) == 1


@pytest.mark.asyncio
async def test_list_notes_hides_notes_with_events(storage, fake_supabase):
    fake_supabase.queue([
        {"id": "a", "calendar_events": []},
        {"id": "b", "calendar_events": [{"id": "e1"}]},
    ])

    assert await storage.list_notes(TEST_USER) == [{"id": "a"}]
    (limit,), _ = fake_supabase.executed[0].called("limit")[0]
    assert limit == 50


@pytest.mark.asyncio
async def test_recent_notes_exclude_private_tag(storage, fake_supabase):
    await storage.list_recent_notes(TEST_USER, limit=20, exclude_hashtag="#private")

    query = fake_supabase.executed[0]
    assert query.called("not_")
    assert query.called("contains") == [(("hashtags", ["#private"]), {})]


@pytest.mark.asyncio
async def test_upcoming_events_use_local_timestamps(storage, fake_supabase, now):
    await storage.list_upcoming_events(TEST_USER, start=now, end=now + timedelta(days=30), limit=20)

    query = fake_supabase.executed[0]
    assert query.called("gte") == [(("start_datetime", "2025-09-29T10:00:00"), {})]
    assert query.called("lte") == [(("start_datetime", "2025-10-29T10:00:00"), {})]


@pytest.mark.asyncio
async def test_save_conversation_note_tags(storage, fake_supabase):
    fake_supabase.queue([{"id": "n1"}])

    await storage.save_conversation_note(TEST_USER, "Conversation with AI - 9/29/2025")

    (row,), _ = fake_supabase.executed[0].called("insert")[0]
    assert row["hashtags"] == ["#conversation", "#ai"]
    assert row["ai_classification"] == {"type": "ai_conversation"}


@pytest.mark.asyncio
async def test_notifications(storage, fake_supabase):
    fake_supabase.queue(
        [{"id": "x1"}, {"id": "x2"}],
        [],
        [{"id": "x1", "is_read": True}, {"id": "x2", "is_read": True}],
    )

    assert await storage.unread_count(TEST_USER) == 2
    with pytest.raises(NotFoundError):
        await storage.mark_notification_read("missing", TEST_USER)
    assert await storage.mark_all_notifications_read(TEST_USER) == 2


@pytest.mark.asyncio
async def test_vault_password_only_decrypted_on_single_read(storage, fake_supabase):
    fake_supabase.queue([{"id": "v1", "title": "Email", "password_encrypted": "ignored"}])

    created = await storage.create_vault_entry(TEST_USER, {"title": "Email", "password": "hunter2", "is_favorite": True})

    assert "password_encrypted" not in created
    assert "password" not in created
    (row,), _ = fake_supabase.executed[0].called("insert")[0]
    assert row["password_encrypted"] != "hunter2"
    assert row["is_favorite"] is True

    fake_supabase.queue([{"id": "v1", "title": "Email", "password_encrypted": row["password_encrypted"]}])
    entry = await storage.get_vault_entry("v1", TEST_USER)
    assert entry["password"] == "hunter2"
    assert "password_encrypted" not in entry


@pytest.mark.asyncio
async def test_vault_requires_title_and_password(storage, fake_supabase):
    with pytest.raises(ValidationError):
        await storage.create_vault_entry(TEST_USER, {"title": "Email"})
    assert fake_supabase.executed == []


@pytest.mark.asyncio
async def test_vault_update_only_supplied_fields(storage, fake_supabase):
    fake_supabase.queue([{"id": "v1", "title": "Bank", "password_encrypted": "x"}])

    entry = await storage.update_vault_entry("v1", TEST_USER, {"title": "Bank"})

    (row,), _ = fake_supabase.executed[0].called("update")[0]
    assert set(row) == {"title", "updated_at"}
    assert "password_encrypted" not in entry
