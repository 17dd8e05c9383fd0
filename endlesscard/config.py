# config.py

import os
import tempfile
from dotenv import load_dotenv

load_dotenv()


def _csv(value: str):
    return [v.strip() for v in (value or "").split(",") if v.strip()]


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
    DATABASE_PATH = os.getenv("DATABASE_PATH", "endlesscard.db")
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "https://endless-two.vercel.app")
    RESULT_DIR = os.getenv("RESULT_DIR", os.path.join(tempfile.gettempdir(), "endlesscard_results"))
    RESULT_MAX_AGE_HOURS = int(os.getenv("RESULT_MAX_AGE_HOURS", "12"))
    IMAGE_TIMEOUT = float(os.getenv("IMAGE_TIMEOUT", "5.0"))
    LOCAL_STORE_PATH = os.getenv("LOCAL_STORE_PATH", os.path.join(os.path.expanduser("~"), ".endlesscard", "local.json"))
    ALLOWED_ORIGINS = _csv(os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    TOKEN_TTL_MINUTES = int(os.getenv("TOKEN_TTL_MINUTES", "60"))
