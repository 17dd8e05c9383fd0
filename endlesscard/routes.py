# routes.py
import base64
import json
import logging
import os
import time
import uuid
from urllib.parse import urlsplit

from flask import Blueprint, Response, current_app, jsonify, render_template_string, request, send_from_directory
from PIL import Image, ImageDraw

from endlesscard.auth import token_required
from endlesscard.background import FluidBackground
from endlesscard.drawing import pil_to_data_uri, pil_to_png_bytes
from endlesscard.export import build_vcard, export_png, vcard_filename
from endlesscard.loop import ManualScheduler
from endlesscard.models import TEXT_FIELDS, Card
from endlesscard.preview import render_face
from endlesscard.preview3d import CardTextures, InteractionState, clamp_zoom, render_frame
from endlesscard.sharelink import decode_card, decode, share_url
from endlesscard.storage import CardStore
from endlesscard.template import render_layout, resolve_url

logger = logging.getLogger(__name__)

routes = Blueprint("api", __name__)


# ---------- Helpers ----------

def _store() -> CardStore:
    return current_app.extensions["endlesscard"]["store"]


def _upload_to_data_uri(name: str):
    f = request.files.get(name)
    if not f or not f.filename:
        return None
    mime = f.mimetype or "image/png"
    return f"data:{mime};base64," + base64.b64encode(f.read()).decode("ascii")


def card_from_request() -> Card:
    """Card from a JSON body, or from form fields plus optional photo/logo uploads."""
    if request.is_json:
        return Card.model_validate(request.get_json(silent=True) or {})
    form = request.form
    data = {k: form.get(k, "") for k in TEXT_FIELDS}
    data["style"] = form.get("style") or request.args.get("style")
    socials = form.get("socials")
    if socials:
        try:
            data["socials"] = json.loads(socials)
        except ValueError:
            logger.warning("Ignoring malformed socials field")
    data["photo"] = _upload_to_data_uri("photo") or form.get("photo")
    data["logo"] = _upload_to_data_uri("logo") or form.get("logo")
    return Card.model_validate(data)


def _png(img: Image.Image) -> Response:
    return Response(pil_to_png_bytes(img), mimetype="image/png")


def _int_arg(name: str, default: int, lo: int, hi: int) -> int:
    try:
        value = int(request.args.get(name, default))
    except (TypeError, ValueError):
        value = default
    return max(lo, min(hi, value))


def _float_arg(name: str, default: float) -> float:
    try:
        return float(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


# ---------- Results (temp artifacts) ----------

def cleanup_old(directory: str, max_age_hours=12):
    cutoff = time.time() - max_age_hours * 3600
    for name in os.listdir(directory):
        path = os.path.join(directory, name)
        try:
            if os.path.isfile(path) and os.path.getmtime(path) < cutoff:
                os.remove(path)
        except OSError as e:
            logger.warning("Could not remove stale result %s: %s", path, e)


def save_result(data: bytes, ext: str) -> str:
    directory = current_app.config["RESULT_DIR"]
    os.makedirs(directory, exist_ok=True)
    cleanup_old(directory, current_app.config["RESULT_MAX_AGE_HOURS"])
    token = uuid.uuid4().hex
    path = os.path.join(directory, f"{token}.{ext}")
    with open(path, "wb") as f:
        f.write(data)
    return f"/result/{token}.{ext}"


@routes.route("/result/<fname>")
def serve_result(fname):
    directory = current_app.config["RESULT_DIR"]
    if os.path.isfile(os.path.join(directory, os.path.basename(fname))):
        mime = "image/png" if fname.lower().endswith(".png") else "text/vcard"
        return send_from_directory(directory, fname, mimetype=mime)
    return jsonify({"error": "Not Found"}), 404


# ---------- Cards (persistence collaborator) ----------

@routes.route("/api/init-db", methods=["POST"])
def init_db():
    current_app.extensions["endlesscard"]["db"].init_schema()
    return jsonify({"message": "Database initialized"})


@routes.route("/api/cards", methods=["POST"])
@token_required
def create_card(user):
    card = Card.model_validate(request.get_json(silent=True) or {})
    card_id = _store().create(user["id"], card, user["email"])
    return jsonify({"id": card_id}), 201


@routes.route("/api/cards", methods=["GET"])
@routes.route("/api/cards/my-cards", methods=["GET"])
@token_required
def my_cards(user):
    return jsonify(_store().list_for_owner(user["id"]))


@routes.route("/api/cards/saved-cards", methods=["GET"])
@token_required
def saved_cards(user):
    return jsonify(_store().saved_for_user(user["id"]))


@routes.route("/api/cards/<card_id>", methods=["GET"])
def get_card(card_id):
    return jsonify(_store().get(card_id))


@routes.route("/api/cards/<card_id>", methods=["PUT"])
@token_required
def update_card(user, card_id):
    card = Card.model_validate(request.get_json(silent=True) or {})
    return jsonify(_store().update(user["id"], card_id, card))


@routes.route("/api/cards/<card_id>", methods=["DELETE"])
@token_required
def delete_card(user, card_id):
    _store().delete(user["id"], card_id)
    return jsonify({"success": True})


@routes.route("/api/cards/<card_id>/save", methods=["POST"])
@token_required
def save_card(user, card_id):
    _store().save_for_user(user["id"], card_id, user["email"])
    return jsonify({"success": True})


@routes.route("/api/cards/<card_id>/unsave", methods=["POST"])
@token_required
def unsave_card(user, card_id):
    _store().unsave_for_user(user["id"], card_id)
    return jsonify({"success": True})


# ---------- Rendering ----------

# Live preview: same engine as export, returns PNG bytes
@routes.route("/api/preview", methods=["POST"])
def api_preview():
    face = "back" if request.args.get("face") == "back" else "front"
    try:
        card = card_from_request()
        layout = render_layout(card, request.args.get("style") or card.style)
        return _png(render_face(layout, face))
    except Exception as e:
        # tiny error image so the editor keeps going
        logger.exception("Preview failed")
        err = Image.new("RGB", (800, 200), (255, 240, 240))
        d = ImageDraw.Draw(err)
        d.text((12, 12), f"Preview error: {e}", fill=(160, 0, 0))
        return _png(err)


@routes.route("/api/preview3d", methods=["POST"])
def api_preview3d():
    card = card_from_request()
    viewport = (_int_arg("width", 400, 50, 2000), _int_arg("height", 200, 50, 2000))
    ry = _float_arg("rotation_y", 0.0)
    rx = _float_arg("rotation_x", 0.0)
    zoom = clamp_zoom(_float_arg("zoom", 3.0))
    state = InteractionState(rotation_x=rx, rotation_y=ry, target_rotation_x=rx, target_rotation_y=ry,
                             zoom=zoom, target_zoom=zoom)
    textures = CardTextures(card)
    try:
        textures.wait(current_app.config["IMAGE_TIMEOUT"])
        return _png(render_frame(textures, state, viewport))
    finally:
        textures.dispose()


@routes.route("/background.png")
def background_png():
    size = (_int_arg("w", 1280, 16, 4096), _int_arg("h", 720, 16, 4096))
    seed = request.args.get("seed", "0")
    fluid = FluidBackground(*size, scheduler=ManualScheduler(), seed=seed)
    try:
        return _png(fluid.render(_float_arg("t", 0.0)))
    finally:
        fluid.dispose()


# ---------- Export ----------

def _vcard_response(card: Card) -> Response:
    text = build_vcard(card, note_url=current_app.config["PUBLIC_BASE_URL"])
    resp = Response(text, mimetype="text/vcard")
    resp.headers["Content-Disposition"] = f'attachment; filename="{vcard_filename(card)}"'
    return resp


def _png_response(card: Card, card_id=None) -> Response:
    result = export_png(
        card,
        style=request.args.get("style") or card.style,
        base_url=current_app.config["PUBLIC_BASE_URL"],
        card_id=card_id,
        timeout=current_app.config["IMAGE_TIMEOUT"],
    )
    if request.args.get("store"):
        return jsonify({"png_url": save_result(result.png, "png"), "share_url": result.url})
    resp = Response(result.png, mimetype="image/png")
    resp.headers["Content-Disposition"] = f'attachment; filename="{result.filename}"'
    resp.headers["X-Share-Url"] = result.url
    return resp


@routes.route("/api/export/vcard", methods=["POST"])
def export_vcard():
    return _vcard_response(card_from_request())


@routes.route("/api/export/png", methods=["POST"])
def export_png_route():
    return _png_response(card_from_request())


@routes.route("/api/share-link", methods=["POST"])
def api_share_link():
    card = card_from_request()
    style = request.args.get("style")
    if style:
        card = Card.model_validate({**card.model_dump(), "style": style})
    return jsonify({"url": share_url(card.snapshot(), current_app.config["PUBLIC_BASE_URL"])})


# ---------- Public viewer ----------

VIEWER_HTML = r"""
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{{ title }}</title>
  <style>
    body { margin: 0; min-height: 100vh; background: #000 url('/background.png?w=1280&h=720') center/cover fixed;
           color: #fff; font-family: Arial, sans-serif; display: flex; flex-direction: column; align-items: center; justify-content: center; }
    .face { width: min(600px, 90vw); border-radius: 14px; box-shadow: 0 20px 60px rgba(0,0,0,.6); margin: 12px 0; }
    .actions a { display: inline-block; margin: 8px; padding: 10px 18px; border: 1px solid #444; border-radius: 999px; color: #fff; text-decoration: none; }
    .socials a { color: #ccc; margin: 0 6px; }
  </style>
</head>
<body>
{% if not card %}
  <div class="loading">Loading...</div>
{% else %}
  <img class="face" alt="front" src="{{ front }}">
  <img class="face" alt="back" src="{{ back }}">
  {% if socials %}
  <div class="socials">
    {% for s in socials %}{% if s.url %}<a href="{{ s.url }}" rel="noopener">{{ s.platform }}</a>{% else %}<span>{{ s.platform }}: {{ s.handle }}</span>{% endif %}{% endfor %}
  </div>
  {% endif %}
  <div class="actions">
    <a href="{{ vcf_url }}">Save contact</a>
    <a href="{{ png_url }}">Download card</a>
  </div>
{% endif %}
</body>
</html>
"""


def _web_href(url: str):
    """``url`` when it is an http(s) link, otherwise None."""
    url = (url or "").strip()
    try:
        scheme = urlsplit(url).scheme
    except ValueError:
        return None
    return url if scheme in ("http", "https") else None


@routes.route("/c/<card_id>")
def viewer(card_id):
    data = request.args.get("data")
    snapshot = decode(data)
    if snapshot is None:
        return render_template_string(VIEWER_HTML, card=None, title="Loading...")
    card = snapshot.to_card()
    layout = render_layout(card)
    size = (600, 343)
    return render_template_string(
        VIEWER_HTML,
        card=card,
        title=card.name or "Business card",
        front=pil_to_data_uri(render_face(layout, "front", size=size)),
        back=pil_to_data_uri(render_face(layout, "back", size=size)),
        socials=[{"platform": s.platform, "handle": s.handle, "url": _web_href(resolve_url(s.platform, s.handle))}
                 for s in card.socials],
        vcf_url=f"/c/{card_id}/card.vcf?data={data}",
        png_url=f"/c/{card_id}/card.png?data={data}",
    )


@routes.route("/c/<card_id>/card.vcf")
def viewer_vcard(card_id):
    return _vcard_response(decode_card(request.args.get("data")))


@routes.route("/c/<card_id>/card.png")
def viewer_png(card_id):
    return _png_response(decode_card(request.args.get("data")), card_id=card_id)
