# template.py
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from endlesscard.models import Card, normalize_style
from endlesscard.themes import theme

PLACEHOLDERS = {
    "name": "Your Name",
    "title": "Your Title",
    "company": "Your Company",
    "phone": "Not provided",
    "email": "Not provided",
    "website": "Not provided",
    "address": "Not provided",
}

FALLBACK_GLYPH = "K"

CONTACT_ROWS = [
    ("Phone", "phone"),
    ("Email", "email"),
    ("Website", "website"),
    ("Address", "address"),
]


# ====== Layout model ======

@dataclass
class Region:
    name: str
    kind: str
    lines: List[str] = field(default_factory=list)
    placeholder: bool = False
    draw_order: int = 10
    glyph: Optional[str] = None
    image: Optional[str] = None
    image_kind: Optional[str] = None
    rows: List[dict] = field(default_factory=list)
    extra: dict = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.lines[0] if self.lines else ""


@dataclass
class Face:
    name: str
    regions: Dict[str, Region] = field(default_factory=dict)

    def add(self, region: Region) -> Region:
        self.regions[region.name] = region
        return region

    def get(self, name: str) -> Optional[Region]:
        return self.regions.get(name)

    def ordered_regions(self) -> List[Region]:
        # sorted() is stable, so regions sharing a z-level keep insertion order
        return sorted(self.regions.values(), key=lambda r: r.draw_order)


@dataclass
class CardLayout:
    style: str
    front: Face
    back: Face

    def face(self, name: str) -> Face:
        if name not in ("front", "back"):
            raise ValueError(f"unknown face {name!r}")
        return self.front if name == "front" else self.back

    def all_text(self) -> List[str]:
        out = []
        for face in (self.front, self.back):
            for region in face.ordered_regions():
                out.extend(region.lines)
        return out


# ====== Layout ======

def text_or_placeholder(card: Card, field_name: str):
    value = (getattr(card, field_name, "") or "").strip()
    if value:
        return value, False
    return PLACEHOLDERS[field_name], True


def identity_glyph(card: Card) -> str:
    name = (card.name or "").strip()
    return name[0].upper() if name else FALLBACK_GLYPH


def resolve_url(platform: str, handle: str) -> str:
    handle = (handle or "").strip()
    if platform == "Instagram":
        return f"https://instagram.com/{handle}"
    if platform == "X":
        return f"https://twitter.com/{handle}"
    if platform == "LinkedIn":
        return handle if handle.startswith("http") else f"https://linkedin.com/in/{handle}"
    if platform == "GitHub":
        return f"https://github.com/{handle}"
    return handle


def _identity_region(card: Card) -> Region:
    region = Region(name="identity_mark", kind="identity", draw_order=1, glyph=identity_glyph(card))
    region.placeholder = not (card.name or "").strip()
    if card.logo:
        region.image, region.image_kind = card.logo, "logo"
    elif card.photo:
        region.image, region.image_kind = card.photo, "photo"
    return region


def _front(card: Card, style: str) -> Face:
    face = Face("front")
    company, company_ph = text_or_placeholder(card, "company")
    name, name_ph = text_or_placeholder(card, "name")

    face.add(Region(name="company_header", kind="text", lines=[company], placeholder=company_ph,
                    extra={"uppercase": style == "techno"}))
    face.add(_identity_region(card))
    if style == "techno":
        title, title_ph = text_or_placeholder(card, "title")
        face.add(Region(name="name_line", kind="text", lines=[name.upper(), title],
                        placeholder=name_ph and title_ph, extra={"accent": company}))
        handles = [s.handle for s in card.socials if s.handle]
        if handles:
            face.add(Region(name="social_line", kind="text", lines=[" / ".join(handles)]))
        t = theme(style)
        face.add(Region(name="decoration", kind="knobs", draw_order=0,
                        lines=list(t["corner_labels"]),
                        extra={"angles": list(t["knob_angles"]), "wave": True}))
    else:
        face.add(Region(name="name_line", kind="text", lines=[name.upper()], placeholder=name_ph))
    return face


def _back(card: Card, style: str) -> Face:
    face = Face("back")
    title, title_ph = text_or_placeholder(card, "title")
    face.add(Region(name="headline", kind="text", lines=[title], placeholder=title_ph))

    rows = []
    for label, key in CONTACT_ROWS:
        value, missing = text_or_placeholder(card, key)
        # multi-line addresses render on one row
        value = " ".join(value.split())
        rows.append({"label": label, "field": key, "value": value, "provided": not missing})
    face.add(Region(name="contact_block", kind="rows",
                    lines=[f"{r['label']}: {r['value']}" for r in rows],
                    placeholder=not any(r["provided"] for r in rows), rows=rows))

    if card.socials:
        social_rows = [
            {"platform": s.platform, "handle": s.handle, "label": s.label, "url": resolve_url(s.platform, s.handle)}
            for s in card.socials
        ]
        face.add(Region(name="social_block", kind="rows",
                        lines=["Social Links:"] + [f"{r['platform']}: {r['handle']}" for r in social_rows],
                        rows=social_rows))

    name, name_ph = text_or_placeholder(card, "name")
    company, company_ph = text_or_placeholder(card, "company")
    face.add(Region(name="signature", kind="text", lines=[name, company], placeholder=name_ph and company_ph))

    t = theme(style)
    if style == "techno":
        face.add(Region(name="decoration", kind="knobs", draw_order=0,
                        lines=list(t["corner_labels"]), extra={"angles": list(t["knob_angles"]), "wave": False}))
    else:
        face.add(Region(name="decoration", kind="swatches", draw_order=0, extra={"colors": list(t["swatches"])}))
    return face


def render_layout(card: Card, style: Optional[str] = None) -> CardLayout:
    style = normalize_style(style if style is not None else card.style)
    return CardLayout(style=style, front=_front(card, style), back=_back(card, style))
