import sqlite3

import pytest

from endlesscard.errors import EndlessCardError, NotFoundError, PermissionDeniedError
from endlesscard.models import Card, SocialLink
from endlesscard.storage import CardStore, Database


@pytest.fixture
def store(tmp_path):
    db = Database(str(tmp_path / "cards.db"))
    db.init_schema()
    yield CardStore(db)
    db.close()


def test_schema_is_idempotent(tmp_path):
    db = Database(str(tmp_path / "cards.db"))
    db.init_schema()
    db.init_schema()
    tables = {r["name"] for r in db.get_connection().execute("SELECT name FROM sqlite_master WHERE type='table'")}
    assert {"users", "cards", "saved_cards"} <= tables
    db.close()


def test_create_and_get_round_trip(store, full_card_data):
    card = Card.model_validate(full_card_data)
    card_id = store.create("auth-1", card, "ada@example.com")
    row = store.get(card_id)
    assert row["id"] == card_id
    assert row["name"] == "Ada Lovelace"
    assert [s["platform"] for s in row["socials"]] == ["GitHub", "LinkedIn"]
    assert row["created_at"] == row["updated_at"]
    assert store.list_for_owner("auth-1")[0]["id"] == card_id


def test_duplicate_platforms_are_stored_as_given(store):
    card = Card(name="Ada", socials=[SocialLink(platform="X", handle="a"), SocialLink(platform="X", handle="b")])
    row = store.get(store.create("auth-1", card))
    assert [s["handle"] for s in row["socials"]] == ["a", "b"]


def test_ensure_user_is_stable(store):
    first = store.ensure_user("auth-1", "a@example.com")
    assert store.ensure_user("auth-1") == first
    assert store.ensure_user("auth-2") != first


def test_missing_card_and_unknown_owner(store):
    with pytest.raises(NotFoundError):
        store.get("nope")
    assert store.list_for_owner("stranger") == []
    assert store.saved_for_user("stranger") == []


def test_only_owner_can_write(store):
    card_id = store.create("owner", Card(name="Ada"))
    store.ensure_user("other")
    with pytest.raises(PermissionDeniedError):
        store.update("other", card_id, Card(name="Hacked"))
    with pytest.raises(PermissionDeniedError):
        store.delete("stranger", card_id)
    with pytest.raises(NotFoundError):
        store.update("owner", "missing", Card())

    updated = store.update("owner", card_id, Card(name="Ada L.", style="techno"))
    assert updated["name"] == "Ada L."
    assert updated["style"] == "techno"

    store.delete("owner", card_id)
    with pytest.raises(NotFoundError):
        store.get(card_id)


def test_save_and_unsave(store):
    card_id = store.create("owner", Card(name="Ada"))
    store.save_for_user("fan", card_id, "fan@example.com")
    assert [c["id"] for c in store.saved_for_user("fan")] == [card_id]
    with pytest.raises(EndlessCardError, match="already saved"):
        store.save_for_user("fan", card_id)
    with pytest.raises(NotFoundError):
        store.save_for_user("fan", "missing")
    store.unsave_for_user("fan", card_id)
    assert store.saved_for_user("fan") == []


def test_deleting_card_removes_bookmarks(store):
    card_id = store.create("owner", Card(name="Ada"))
    store.save_for_user("fan", card_id)
    store.delete("owner", card_id)
    assert store.saved_for_user("fan") == []


def test_bad_socials_json_reads_as_empty(store):
    card_id = store.create("owner", Card(name="Ada"))
    store.conn.execute("UPDATE cards SET socials = ? WHERE id = ?", ("{oops", card_id))
    store.conn.commit()
    assert store.get(card_id)["socials"] == []


def test_foreign_keys_enforced(store):
    with pytest.raises(sqlite3.IntegrityError):
        store.conn.execute(
            "INSERT INTO saved_cards (user_id, card_id, created_at) VALUES ('x', 'y', 'now')"
        )
