import json

import pytest

from endlesscard.editor import (
    CARD_KEY, HISTORY_KEY, STEP_KEY, STEP_KEYS, STYLE_KEY, GuidedEditor, LocalStore, history, remember_viewed,
)
from endlesscard.models import Card


@pytest.fixture
def store(tmp_path):
    return LocalStore(str(tmp_path / "state" / "local.json"))


def test_store_persists_strings(store):
    store.set("a", 1)
    store.set("b", "two")
    reopened = LocalStore(store.path)
    assert reopened.get("a") == "1"
    assert reopened.get("b") == "two"
    reopened.remove("a")
    assert LocalStore(store.path).keys() == ["b"]
    assert reopened.get("missing", "x") == "x"


def test_corrupt_store_starts_empty(tmp_path):
    path = tmp_path / "local.json"
    path.write_text("{not json")
    assert LocalStore(str(path)).keys() == []
    path.write_text("[1, 2]")
    assert LocalStore(str(path)).keys() == []


def test_steps_are_clamped(store):
    editor = GuidedEditor(store)
    assert editor.step_key == "name"
    editor.go_back()
    assert editor.current_step == 0
    for _ in range(len(STEP_KEYS) + 3):
        editor.go_next()
    assert editor.current_step == len(STEP_KEYS) - 1
    assert editor.step_key == "preview"
    assert store.get(STEP_KEY) == str(len(STEP_KEYS) - 1)


def test_edits_resume_from_store(store, png_data_uri):
    editor = GuidedEditor(store)
    editor.set_field("name", "Ada Lovelace")
    editor.set_field("photo", png_data_uri)
    editor.go_next()
    editor.next_style()

    resumed = GuidedEditor(LocalStore(store.path))
    assert resumed.card.name == "Ada Lovelace"
    assert resumed.card.photo == png_data_uri
    assert resumed.current_step == 1
    assert resumed.style == "techno"
    assert resumed.card.style == "techno"


def test_unknown_field_rejected(store):
    with pytest.raises(ValueError):
        GuidedEditor(store).set_field("socials", "x")


def test_invalid_stored_state_is_ignored(store):
    store.set(CARD_KEY, "{broken")
    store.set(STEP_KEY, "99")
    store.set(STYLE_KEY, "abc")
    editor = GuidedEditor(store)
    assert editor.card.name == ""
    assert editor.current_step == 0
    assert editor.style_index == 0


def test_set_social_replaces_per_platform(store):
    editor = GuidedEditor(store)
    editor.set_social("GitHub", "ada")
    editor.set_social("X", "ada_x")
    editor.set_social("GitHub", "  lovelace ")
    assert [(s.platform, s.handle) for s in editor.card.socials] == [("X", "ada_x"), ("GitHub", "lovelace")]
    editor.set_social("X", "")
    assert [s.platform for s in editor.card.socials] == ["GitHub"]


def test_other_platform_uses_custom_name(store):
    editor = GuidedEditor(store)
    editor.set_social("Other", "https://ada.dev", platform_name="Blog")
    editor.set_social("Other", "https://mastodon.social/@ada", platform_name="Mastodon")
    assert [(s.platform, s.label) for s in editor.card.socials] == [("Blog", "Blog"), ("Mastodon", "Mastodon")]
    editor.remove_social(0)
    assert [s.platform for s in editor.card.socials] == ["Mastodon"]
    editor.remove_social(5)
    assert len(editor.card.socials) == 1


def test_style_cycles(store):
    editor = GuidedEditor(store)
    editor.prev_style()
    assert editor.style == "techno"
    editor.next_style()
    assert editor.style == "kosma"
    assert store.get(STYLE_KEY) == "0"


def test_history_prepends_new_ids_only(store):
    assert remember_viewed(store, "one", Card(name="Ada"))
    assert remember_viewed(store, "two", Card(name="Grace"))
    assert not remember_viewed(store, "one", Card(name="Changed"))
    entries = history(store)
    assert [e.id for e in entries] == ["two", "one"]
    assert entries[1].data.name == "Ada"
    assert json.loads(store.get(HISTORY_KEY))[0]["id"] == "two"


def test_corrupt_history_reads_empty(store):
    store.set(HISTORY_KEY, "not json")
    assert history(store) == []
