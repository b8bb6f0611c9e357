from flask import Flask, g, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager, current_user
from pathlib import Path
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()

from .config import Config
from .db_maintenance import ensure_database_schema
from .i18n import DEFAULT_LANGUAGE, normalise_language_code, translate_text


def create_app(config_class: type[Config] | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    config = config_class or Config
    app.config.from_object(config)

    Path(app.instance_path).mkdir(parents=True, exist_ok=True)
    if not app.config.get("LOCAL_PROGRESS_DIR"):
        app.config["LOCAL_PROGRESS_DIR"] = str(Path(app.instance_path) / "progress")

    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI")
    if db_uri:
        try:
            url = make_url(db_uri)
        except ArgumentError:
            url = None
        if url and url.drivername == "sqlite" and url.database and url.database != ":memory:":
            db_path = Path(url.database)
            if not db_path.is_absolute():
                db_path = Path(app.root_path) / db_path
            db_path.parent.mkdir(parents=True, exist_ok=True)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    from .models import AuthToken, Profile
    from .services.enem_api import EnemApiClient
    from .services.local_store import LocalProgressStore
    from .services.session_registry import SessionRegistry

    @login_manager.user_loader
    def load_user(user_id: str) -> Profile | None:
        return db.session.get(Profile, user_id)

    @login_manager.request_loader
    def load_user_from_request(request) -> Profile | None:
        header = request.headers.get("Authorization", "")
        if not header.lower().startswith("bearer "):
            return None
        token = AuthToken.find_active(header[7:].strip())
        return token.profile if token else None

    @login_manager.unauthorized_handler
    def unauthorized():
        language = getattr(g, "active_language", DEFAULT_LANGUAGE)
        return (
            jsonify(
                {
                    "error": translate_text("Authentication required.", language),
                    "redirectUrl": "/login",
                }
            ),
            401,
        )

    app.extensions["enem_api"] = EnemApiClient.from_config(app.config)
    app.extensions["local_progress"] = LocalProgressStore(app.config["LOCAL_PROGRESS_DIR"])
    app.extensions["exam_sessions"] = SessionRegistry(
        ttl_seconds=app.config["EXAM_SESSION_TTL"],
        timer_enabled=app.config["EXAM_TIMER_ENABLED"],
    )

    from .api import api_bp

    app.register_blueprint(api_bp)

    @app.before_request
    def assign_active_language() -> None:
        language = None
        if current_user.is_authenticated:
            language = normalise_language_code(current_user.preferred_language)
        g.active_language = language or DEFAULT_LANGUAGE

    @app.route("/")
    def index():
        return jsonify({"service": "examsim", "exams": "/api/exams"})

    with app.app_context():
        ensure_database_schema(db.engine, app.logger)

    return app
