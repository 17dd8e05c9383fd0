# editor.py
import json
import logging
import os
from typing import List, Optional

from pydantic import ValidationError

from endlesscard.models import STYLES, TEXT_FIELDS, Card, HistoryEntry, SocialLink

logger = logging.getLogger(__name__)

STEP_KEYS = [
    "name",
    "title",
    "company",
    "phone",
    "email",
    "website",
    "address",
    "photo",
    "logo",
    "socials",
    "preview",
]

CARD_KEY = "remember_card_data"
STEP_KEY = "remember_current_step"
STYLE_KEY = "remember_style_index"
HISTORY_KEY = "card_history"


# ====== Local store ======

class LocalStore:
    """JSON file standing in for device storage. Values are strings, like localStorage."""

    def __init__(self, path: str):
        self.path = path
        self._data = self._read()

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Local store %s unreadable, starting empty: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.error("Local store %s is not an object, starting empty", self.path)
            return {}
        return data

    def _flush(self):
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp = self.path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._data, f)
        os.replace(tmp, self.path)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._data.get(key, default)

    def set(self, key: str, value: str):
        self._data[key] = str(value)
        self._flush()

    def remove(self, key: str):
        if self._data.pop(key, None) is not None:
            self._flush()

    def keys(self):
        return list(self._data)


# ====== Guided editor ======

def _parse_index(raw: Optional[str], upper: int) -> Optional[int]:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None
    return value if 0 <= value < upper else None


class GuidedEditor:
    def __init__(self, store: LocalStore, styles=STYLES):
        self.store = store
        self.styles = tuple(styles)
        self.card = Card()
        self.current_step = 0
        self.style_index = 0
        self.load()

    @property
    def step_key(self) -> str:
        return STEP_KEYS[self.current_step]

    @property
    def style(self) -> str:
        return self.styles[self.style_index]

    @property
    def total_steps(self) -> int:
        return len(STEP_KEYS)

    def load(self):
        raw = self.store.get(CARD_KEY)
        if raw:
            try:
                self.card = Card.model_validate_json(raw)
            except ValidationError as e:
                logger.error("Failed to parse saved card data: %s", e)
        step = _parse_index(self.store.get(STEP_KEY), len(STEP_KEYS))
        if step is not None:
            self.current_step = step
        style = _parse_index(self.store.get(STYLE_KEY), len(self.styles))
        if style is not None:
            self.style_index = style
        self.card = self.card.model_copy(update={"style": self.style})

    def save(self):
        self.store.set(CARD_KEY, self.card.model_dump_json())
        self.store.set(STEP_KEY, str(self.current_step))
        self.store.set(STYLE_KEY, str(self.style_index))

    def go_next(self):
        self.current_step = min(self.current_step + 1, len(STEP_KEYS) - 1)
        self.save()

    def go_back(self):
        self.current_step = max(self.current_step - 1, 0)
        self.save()

    def set_field(self, field: str, value: Optional[str]):
        if field not in TEXT_FIELDS and field not in ("photo", "logo"):
            raise ValueError(f"unknown card field {field!r}")
        self.card = Card.model_validate({**self.card.model_dump(), field: value})
        self.save()

    def set_social(self, platform: str, handle: str, platform_name: Optional[str] = None):
        """Replace the entry for ``platform``; an empty handle removes it."""
        plat = (platform_name or "Other") if platform == "Other" else (platform or "Other")
        handle = (handle or "").strip()
        socials = [s for s in self.card.socials if s.platform != plat]
        if handle:
            socials.append(SocialLink(platform=plat, handle=handle, label=plat))
        self.card = self.card.model_copy(update={"socials": socials})
        self.save()

    def remove_social(self, index: int):
        socials = [s for i, s in enumerate(self.card.socials) if i != index]
        self.card = self.card.model_copy(update={"socials": socials})
        self.save()

    def _set_style(self, index: int):
        self.style_index = index % len(self.styles)
        self.card = self.card.model_copy(update={"style": self.style})
        self.save()

    def next_style(self):
        self._set_style(self.style_index + 1)

    def prev_style(self):
        self._set_style(self.style_index - 1)


# ====== History ======

def history(store: LocalStore) -> List[HistoryEntry]:
    raw = store.get(HISTORY_KEY) or "[]"
    try:
        items = json.loads(raw)
        return [HistoryEntry.model_validate(item) for item in items]
    except (ValueError, TypeError, ValidationError) as e:
        logger.error("Failed to read card history: %s", e)
        return []


def remember_viewed(store: LocalStore, card_id: str, card: Card) -> bool:
    """Prepend a history entry the first time ``card_id`` is viewed."""
    entries = history(store)
    if any(e.id == card_id for e in entries):
        return False
    entries.insert(0, HistoryEntry(id=card_id, data=card))
    store.set(HISTORY_KEY, json.dumps([e.model_dump(mode="json") for e in entries]))
    return True
