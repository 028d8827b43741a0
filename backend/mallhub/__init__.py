# backend/mallhub/__init__.py
from flask import Flask, jsonify

from .config import Config
from .extensions import db, migrate
from .errors import MallError


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    @app.errorhandler(MallError)
    def handle_mall_error(err):
        if err.status >= 500:
            app.logger.error("%s: %s %s", err.code, err.message, err.details)
        return jsonify(err.to_dict()), err.status

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
