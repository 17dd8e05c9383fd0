import pytest

from endlesscard.models import Card, SocialLink
from endlesscard.template import PLACEHOLDERS, identity_glyph, render_layout, resolve_url


def test_empty_card_renders_only_placeholders():
    layout = render_layout(Card())
    front = layout.front
    assert front.get("company_header").text == "Your Company"
    assert front.get("company_header").placeholder
    assert front.get("name_line").text == "YOUR NAME"
    assert front.get("identity_mark").glyph == "K"

    back = layout.back
    assert back.get("headline").text == "Your Title"
    contact = back.get("contact_block")
    assert contact.placeholder
    assert [r["value"] for r in contact.rows] == ["Not provided"] * 4
    assert back.get("social_block") is None
    assert back.get("signature").lines == ["Your Name", "Your Company"]

    for text in layout.all_text():
        assert text.strip()
        assert "None" not in text
        assert "undefined" not in text


def test_techno_empty_card_has_no_blank_text():
    layout = render_layout(Card(), "techno")
    assert layout.style == "techno"
    for text in layout.all_text():
        assert text.strip()


def test_filled_card_uses_values(full_card_data):
    layout = render_layout(Card.model_validate(full_card_data))
    assert layout.front.get("company_header").text == "Engine Works"
    assert not layout.front.get("company_header").placeholder
    rows = {r["field"]: r for r in layout.back.get("contact_block").rows}
    assert rows["email"]["value"] == "ada@example.com"
    assert rows["address"]["value"] == "12 St James's Square London"
    social = layout.back.get("social_block")
    assert social.lines[0] == "Social Links:"
    assert [r["url"] for r in social.rows] == ["https://github.com/ada", "https://linkedin.com/in/adalovelace"]


def test_identity_glyph():
    assert identity_glyph(Card(name="  ada")) == "A"
    assert identity_glyph(Card()) == "K"


def test_identity_prefers_logo_then_photo(png_data_uri):
    logo_layout = render_layout(Card(name="Ada", photo=png_data_uri, logo=png_data_uri))
    assert logo_layout.front.get("identity_mark").image_kind == "logo"
    photo_layout = render_layout(Card(name="Ada", photo=png_data_uri))
    assert photo_layout.front.get("identity_mark").image_kind == "photo"
    assert render_layout(Card(name="Ada")).front.get("identity_mark").image is None


@pytest.mark.parametrize("platform,handle,url", [
    ("LinkedIn", "https://x.com/y", "https://x.com/y"),
    ("LinkedIn", "jdoe", "https://linkedin.com/in/jdoe"),
    ("GitHub", "octocat", "https://github.com/octocat"),
    ("Instagram", "ada", "https://instagram.com/ada"),
    ("X", "ada", "https://twitter.com/ada"),
    ("Other", "https://ada.dev", "https://ada.dev"),
    ("TikTok", "@ada", "@ada"),
])
def test_resolve_url(platform, handle, url):
    assert resolve_url(platform, handle) == url


def test_decoration_draws_below_text():
    for style in ("kosma", "techno"):
        layout = render_layout(Card(name="Ada"), style)
        for face in (layout.front, layout.back):
            ordered = face.ordered_regions()
            orders = [r.draw_order for r in ordered]
            assert orders == sorted(orders)
        assert layout.back.ordered_regions()[0].name == "decoration"


def test_techno_front_has_social_line():
    card = Card(name="Ada", socials=[SocialLink(platform="GitHub", handle="ada"), SocialLink(platform="X", handle="al")])
    layout = render_layout(card, "techno")
    assert layout.front.get("social_line").text == "ada / al"
    assert layout.front.get("name_line").lines[0] == "ADA"
    assert layout.front.get("decoration").kind == "knobs"
    assert layout.back.get("decoration").kind == "knobs"
    assert render_layout(card, "kosma").back.get("decoration").kind == "swatches"


def test_unknown_face_name():
    with pytest.raises(ValueError):
        render_layout(Card()).face("side")


def test_placeholder_table_complete():
    assert set(PLACEHOLDERS) == {"name", "title", "company", "phone", "email", "website", "address"}
