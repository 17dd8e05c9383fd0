# app.py
import json
import logging
import os

from flask import Flask, jsonify
from flask_cors import CORS
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from endlesscard.config import Config
from endlesscard.errors import AuthError, EndlessCardError, ExportError, NotFoundError, PermissionDeniedError
from endlesscard.routes import routes
from endlesscard.storage import CardStore, Database

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level="INFO"):
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format=LOG_FORMAT)


def register_error_handlers(app: Flask):
    @app.errorhandler(ValidationError)
    def _validation(e):
        return jsonify(json.loads(e.json(include_url=False))), 400

    @app.errorhandler(AuthError)
    def _auth(e):
        return jsonify({"error": "Unauthorized"}), 401

    @app.errorhandler(PermissionDeniedError)
    def _forbidden(e):
        return jsonify({"error": str(e) or "Forbidden"}), 403

    @app.errorhandler(NotFoundError)
    def _not_found(e):
        return jsonify({"error": str(e) or "Not found"}), 404

    @app.errorhandler(ExportError)
    def _export(e):
        return jsonify({"error": e.message, "alert": True}), 500

    @app.errorhandler(EndlessCardError)
    def _domain(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(Exception)
    def _unexpected(e):
        if isinstance(e, HTTPException):
            return e
        logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error"}), 500


def create_app(overrides=None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    configure_logging(app.config["LOG_LEVEL"])

    CORS(
        app,
        resources={
            r"/*": {
                "origins": app.config["ALLOWED_ORIGINS"],
                "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
                "allow_headers": ["Content-Type", "Authorization"],
                "expose_headers": ["X-Share-Url", "Content-Disposition"],
                "supports_credentials": False,
                "max_age": 86400,
            }
        },
    )

    os.makedirs(app.config["RESULT_DIR"], exist_ok=True)
    db = Database(app.config["DATABASE_PATH"])
    db.init_schema()
    app.extensions["endlesscard"] = {"db": db, "store": CardStore(db)}

    app.register_blueprint(routes)
    register_error_handlers(app)
    logger.info("endlesscard app ready (db=%s)", app.config["DATABASE_PATH"])
    return app
