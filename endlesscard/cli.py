#!/usr/bin/env python3
"""endlesscard CLI - render, export and share digital business cards."""
import base64
import json
import mimetypes
import os

import click
import requests

from endlesscard import __version__
from endlesscard.config import Config


def _image_to_data_uri(source, base_dir):
    """A photo/logo given in a card file as a path (relative to the file) or an http(s) URL."""
    if not source or source.startswith("data:"):
        return source
    if source.startswith(("http://", "https://")):
        try:
            resp = requests.get(source, timeout=Config.IMAGE_TIMEOUT)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise click.ClickException(f"Could not fetch image {source}: {e}")
        data = resp.content
        mime = resp.headers.get("Content-Type", "").split(";")[0] or "image/png"
    else:
        path = os.path.join(base_dir, os.path.expanduser(source))
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise click.ClickException(f"Could not read image {path}: {e}")
        mime = mimetypes.guess_type(path)[0] or "image/png"
    return f"data:{mime};base64," + base64.b64encode(data).decode("ascii")


def _load_card(path):
    from endlesscard.models import Card
    with open(path, "r", encoding="utf-8") as f:
        card = Card.model_validate(json.load(f))
    base_dir = os.path.dirname(os.path.abspath(path))
    return card.model_copy(update={
        "photo": _image_to_data_uri(card.photo, base_dir),
        "logo": _image_to_data_uri(card.logo, base_dir),
    })


def _logging():
    from endlesscard.app import configure_logging
    configure_logging(Config.LOG_LEVEL)


@click.group()
@click.version_option(version=__version__)
def cli():
    """endlesscard - digital business cards.

    Preview cards, export vCard/PNG artifacts and build share links.
    """
    _logging()


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", type=int, default=5013, help="Port")
@click.option("--debug", is_flag=True, help="Flask debug mode")
def serve(host, port, debug):
    """Run the web service."""
    from endlesscard.app import create_app
    create_app().run(host=host, port=port, debug=debug)


@cli.command("init-db")
@click.option("--path", default=None, help="SQLite file (default: DATABASE_PATH)")
def init_db(path):
    """Create the card tables."""
    from endlesscard.storage import Database
    db = Database(path or Config.DATABASE_PATH)
    db.init_schema()
    db.close()
    click.echo(f"Database initialized: {db.path}")


@cli.command()
@click.argument("card_json", type=click.Path(exists=True))
@click.option("--face", type=click.Choice(["front", "back"]), default="front")
@click.option("--style", type=click.Choice(["kosma", "techno"]), default=None, help="Override the card style")
@click.option("--size", default="1050x600", help="WIDTHxHEIGHT")
@click.option("-o", "--out", "out_path", required=True, help="Output PNG path")
def render(card_json, face, style, size, out_path):
    """Render one face of a card as PNG."""
    from endlesscard.preview import render_face
    from endlesscard.template import render_layout
    try:
        w, h = (int(v) for v in size.lower().split("x"))
    except ValueError:
        raise click.BadParameter(f"expected WIDTHxHEIGHT, got {size!r}", param_hint="--size")
    layout = render_layout(_load_card(card_json), style)
    render_face(layout, face, size=(w, h)).save(out_path)
    click.echo(out_path)


@cli.command()
@click.argument("card_json", type=click.Path(exists=True))
@click.option("-o", "--out", "out_path", default=None, help="Output .vcf (default: <name>.vcf)")
def vcard(card_json, out_path):
    """Export a card as vCard 3.0."""
    from endlesscard.export import build_vcard, vcard_filename
    card = _load_card(card_json)
    out_path = out_path or vcard_filename(card)
    with open(out_path, "w", encoding="utf-8") as f:
        f.write(build_vcard(card, note_url=Config.PUBLIC_BASE_URL))
    click.echo(out_path)


@cli.command()
@click.argument("card_json", type=click.Path(exists=True))
@click.option("--style", type=click.Choice(["kosma", "techno"]), default=None)
@click.option("--base-url", default=None, help="Viewer base URL (default: PUBLIC_BASE_URL)")
@click.option("-o", "--out-dir", default=".", help="Output directory")
def export(card_json, style, base_url, out_dir):
    """Export the share PNG with its QR code."""
    from endlesscard.errors import ExportError
    from endlesscard.export import export_png
    card = _load_card(card_json)
    try:
        result = export_png(card, style=style, base_url=base_url)
    except ExportError as e:
        raise click.ClickException(e.message)
    click.echo(result.save(out_dir))
    click.echo(result.url)


@cli.command("share-link")
@click.argument("card_json", type=click.Path(exists=True))
@click.option("--base-url", default=None, help="Viewer base URL (default: PUBLIC_BASE_URL)")
def share_link(card_json, base_url):
    """Print a share link for a card."""
    from endlesscard.sharelink import share_url
    click.echo(share_url(_load_card(card_json).snapshot(), base_url or Config.PUBLIC_BASE_URL))


@cli.command()
@click.argument("text")
@click.option("--remember", "card_id", default=None, help="Record the card in local history under this id")
def decode(text, card_id):
    """Decode a share payload (or a full share URL) to card JSON."""
    from urllib.parse import parse_qs, urlparse

    from endlesscard.editor import LocalStore, remember_viewed
    from endlesscard.sharelink import decode as decode_payload

    if text.startswith(("http://", "https://")):
        parsed = urlparse(text)
        text = (parse_qs(parsed.query).get("data") or [""])[0]
        card_id = card_id or parsed.path.rstrip("/").rsplit("/", 1)[-1]
    snapshot = decode_payload(text)
    if snapshot is None:
        raise click.ClickException("No card data in payload")
    if card_id:
        remember_viewed(LocalStore(Config.LOCAL_STORE_PATH), card_id, snapshot.to_card())
    click.echo(json.dumps(snapshot.model_dump(), indent=2, ensure_ascii=False))


@cli.command()
@click.argument("card_json", type=click.Path(exists=True))
@click.option("--count", type=int, default=60, help="Number of frames")
@click.option("--fullscreen", is_flag=True, help="Fullscreen camera distance")
@click.option("--compact", is_flag=True, help="Compact smoothing")
@click.option("-o", "--out-dir", required=True, help="Output directory")
def frames(card_json, count, fullscreen, compact, out_dir):
    """Render 3D preview frames of the idle showroom rotation."""
    from endlesscard.loop import ManualScheduler
    from endlesscard.preview3d import CardPreview3D

    os.makedirs(out_dir, exist_ok=True)
    scheduler = ManualScheduler()
    preview = CardPreview3D(_load_card(card_json), compact=compact, fullscreen=fullscreen, scheduler=scheduler)
    try:
        preview.textures.wait(Config.IMAGE_TIMEOUT)
        preview.start()
        for i in range(count):
            scheduler.step()
            preview.last_frame.save(os.path.join(out_dir, f"frame_{i:04d}.png"))
    finally:
        preview.dispose()
    click.echo(f"Wrote {count} frames to {out_dir}")


@cli.command()
@click.option("--width", type=int, default=1280)
@click.option("--height", type=int, default=720)
@click.option("--t", "t", type=float, default=0.0, help="Animation time")
@click.option("--seed", default=None, help="Random seed for the line offsets")
@click.option("-o", "--out", "out_path", required=True, help="Output PNG path")
def background(width, height, t, seed, out_path):
    """Render one frame of the ambient background."""
    from endlesscard.background import FluidBackground
    from endlesscard.loop import ManualScheduler

    fluid = FluidBackground(width, height, scheduler=ManualScheduler(), seed=seed)
    try:
        fluid.render(t).save(out_path)
    finally:
        fluid.dispose()
    click.echo(out_path)


if __name__ == "__main__":
    cli()
