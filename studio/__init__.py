from __future__ import annotations

import atexit
import logging
from collections.abc import Mapping

import click
from flask import Flask, jsonify, send_from_directory
from flask_cors import CORS

from .config import Config
from .errors import StudioError
from .extensions import db
from .notifications import NotificationQueue
from .storage import LocalBlobStore, create_blob_store


def create_app(config_object=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)

    if isinstance(config_object, Mapping):
        app.config.from_mapping(config_object)
    elif config_object:
        app.config.from_object(config_object)
    else:
        app.config.from_envvar("APP_SETTINGS", silent=True)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))
    logging.getLogger(__name__).setLevel(app.config.get("LOG_LEVEL", "INFO"))

    db.init_app(app)

    # Allow the booking site and the admin panel to talk to the backend
    CORS(app,
         origins=app.config.get("CORS_ORIGINS", ["*"]),
         supports_credentials=True,
         allow_headers=["Content-Type", "Authorization"],
         methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"]
    )

    blob_store = create_blob_store(app.config)
    app.extensions["blob_store"] = blob_store

    queue = NotificationQueue(app)
    atexit.register(queue.shutdown)

    @app.errorhandler(StudioError)
    def handle_studio_error(exc: StudioError):
        if exc.status_code >= 500:
            app.logger.error("%s: %s (%s)", exc.code, exc.message, exc.detail)
        return jsonify(exc.to_dict()), exc.status_code

    if isinstance(blob_store, LocalBlobStore):
        @app.get("/uploads/<path:filename>")
        def uploaded_file(filename: str):
            return send_from_directory(blob_store.root, filename)

    @app.cli.command("init-db")
    def init_db_command() -> None:
        """Create all tables and the loyalty settings row."""
        from .settings_store import load_loyalty_settings, save_loyalty_settings

        db.create_all()
        save_loyalty_settings(db.session, load_loyalty_settings(db.session))
        db.session.commit()
        click.echo("Database tables created.")

    from .routes import bp

    app.register_blueprint(bp)

    return app
