# backend/herbtrace/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def _allowed_origins(app: Flask) -> set[str]:
    origins = {app.config["CLIENT_URL"].rstrip("/")}
    origins.update(o.strip().rstrip("/") for o in app.config.get("CORS_ORIGINS", []) if o.strip())
    return origins


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    db.init_app(app)
    migrate.init_app(app, db)

    # Models must be imported before Alembic inspects metadata
    from . import models  # noqa: F401

    from .services.ledger_service import init_ledger
    init_ledger(app)

    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.batches import batches_bp
    from .routes.events import events_bp
    from .routes.compliance import compliance_bp
    from .routes.qr import qr_bp
    from .routes.ledger import ledger_bp

    for blueprint in (system_bp, auth_bp, batches_bp, events_bp, compliance_bp, qr_bp, ledger_bp):
        app.register_blueprint(blueprint)

    origins = _allowed_origins(app)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        return response

    from .cli import register_commands
    register_commands(app)

    return app
