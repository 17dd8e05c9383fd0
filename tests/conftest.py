import base64
import io

import pytest
from PIL import Image

from endlesscard.app import create_app
from endlesscard.auth import issue_token
from endlesscard.loop import ManualScheduler

SECRET = "test-secret-0123456789abcdef012345"


def _png_data_uri(color=(200, 40, 40), size=(32, 32)) -> str:
    bio = io.BytesIO()
    Image.new("RGB", size, color).save(bio, format="PNG")
    return "data:image/png;base64," + base64.b64encode(bio.getvalue()).decode("ascii")


@pytest.fixture
def png_data_uri():
    return _png_data_uri()


@pytest.fixture
def full_card_data():
    return {
        "name": "Ada Lovelace",
        "title": "Analyst",
        "company": "Engine Works",
        "phone": "+44 20 0000 0000",
        "email": "ada@example.com",
        "website": "https://example.com",
        "address": "12 St James's Square\nLondon",
        "socials": [
            {"platform": "GitHub", "handle": "ada", "label": "GitHub"},
            {"platform": "LinkedIn", "handle": "adalovelace", "label": "LinkedIn"},
        ],
        "style": "kosma",
    }


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": SECRET,
        "DATABASE_PATH": str(tmp_path / "cards.db"),
        "RESULT_DIR": str(tmp_path / "results"),
        "PUBLIC_BASE_URL": "https://cards.example",
        "IMAGE_TIMEOUT": 2.0,
    })
    yield app
    app.extensions["endlesscard"]["db"].close()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_header():
    def make(user_id="user-1", email="user1@example.com"):
        return {"Authorization": f"Bearer {issue_token(user_id, email, SECRET)}"}
    return make


@pytest.fixture
def scheduler():
    return ManualScheduler()


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()
