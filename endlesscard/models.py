# models.py

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

STYLES = ("kosma", "techno")
DEFAULT_STYLE = "kosma"

PLATFORMS = ("Instagram", "LinkedIn", "X", "GitHub", "Facebook", "TikTok", "YouTube", "Other")

TEXT_FIELDS = ("name", "title", "company", "phone", "email", "website", "address")


def normalize_style(value) -> str:
    if isinstance(value, str) and value.strip().lower() in STYLES:
        return value.strip().lower()
    return DEFAULT_STYLE


class SocialLink(BaseModel):
    platform: str = "Other"
    handle: str = ""
    label: str = ""

    @field_validator("platform", "handle", "label", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else str(v)

    @model_validator(mode="after")
    def _default_label(self):
        if not self.platform:
            self.platform = "Other"
        if not self.label:
            self.label = self.platform
        return self


class ShareableSnapshot(BaseModel):
    """The part of a card that travels in share links and QR codes."""

    name: str = ""
    title: str = ""
    company: str = ""
    phone: str = ""
    email: str = ""
    website: str = ""
    address: str = ""
    socials: List[SocialLink] = Field(default_factory=list)
    style: str = DEFAULT_STYLE

    model_config = ConfigDict(extra="ignore")

    @field_validator(*TEXT_FIELDS, mode="before")
    @classmethod
    def _text(cls, v):
        return "" if v is None else str(v)

    @field_validator("socials", mode="before")
    @classmethod
    def _socials(cls, v):
        return v or []

    @field_validator("style", mode="before")
    @classmethod
    def _style(cls, v):
        return normalize_style(v)

    def to_card(self) -> "Card":
        return Card(**self.model_dump())


class Card(ShareableSnapshot):
    photo: Optional[str] = Field(default=None, validation_alias=AliasChoices("photo", "imageData", "image_data"))
    logo: Optional[str] = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("photo", "logo", mode="before")
    @classmethod
    def _image(cls, v):
        return v or None

    def snapshot(self) -> ShareableSnapshot:
        return ShareableSnapshot(**self.model_dump(exclude={"photo", "logo"}))


class HistoryEntry(BaseModel):
    id: str
    data: Card
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
