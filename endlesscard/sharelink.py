# sharelink.py
import base64
import binascii
import json
import logging
import uuid
from typing import Optional, Union
from urllib.parse import quote, unquote

from pydantic import ValidationError

from endlesscard.models import Card, ShareableSnapshot

logger = logging.getLogger(__name__)


# ====== Codec ======
# compact JSON, UTF-8, URL-safe base64 without padding

def encode(snapshot: Union[ShareableSnapshot, Card]) -> str:
    if isinstance(snapshot, Card):
        snapshot = snapshot.snapshot()
    raw = json.dumps(snapshot.model_dump(), separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode(text: Optional[str]) -> Optional[ShareableSnapshot]:
    if not text or not isinstance(text, str):
        return None
    try:
        s = unquote(text.strip()).replace("+", "-").replace("/", "_").replace(" ", "-")
        raw = base64.urlsafe_b64decode(s + "=" * (-len(s) % 4))
        payload = json.loads(raw.decode("utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("snapshot payload is not an object")
        return ShareableSnapshot.model_validate(payload)
    except (binascii.Error, UnicodeDecodeError, ValueError, ValidationError) as e:
        logger.info("Undecodable share payload: %s", e)
        return None


def decode_card(text: Optional[str]) -> Card:
    snapshot = decode(text)
    return snapshot.to_card() if snapshot is not None else Card()


def share_url(snapshot: Union[ShareableSnapshot, Card], base_url: str, card_id: Optional[str] = None) -> str:
    card_id = card_id or str(uuid.uuid4())
    return f"{base_url.rstrip('/')}/c/{quote(card_id, safe='')}?data={encode(snapshot)}"
