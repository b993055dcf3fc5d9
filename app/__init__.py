import os
from flask import Flask, request

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") != "production":
    from dotenv import load_dotenv
    # Always load .env if present and override any pre-set envs (prod: no .env → no-op)
    load_dotenv(".env", override=True)


from .config import get_config
from .extensions import db, migrate, csrf, login_manager, limiter
from .security.headers import init_security
from .observability import init_logging, init_sentry
from .services.storage import init_storage, StoreUnavailableError, ConstraintViolationError


def _error(code: int, error: str, message=None, headers=None):
    payload = {"error": error, "code": code}
    if message:
        payload["message"] = message
    return (payload, code, headers or {})


def create_app():
    app = Flask(__name__)

    # ---- Rate limiting storage configuration ----
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    use_redis = app_env in ("staging", "production")
    storage_uri = os.environ.get("REDIS_URL") if use_redis else "memory://"
    if use_redis and not storage_uri:
        # Hard fail in stage/prod so we never silently run without RL storage
        raise RuntimeError("REDIS_URL is required in staging/production for rate limiting")
    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    app.config.setdefault("RATELIMIT_DEFAULTS", ["1000 per hour"])
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)

    # Config: clean, explicit, class-based
    app.config.from_object(get_config())

    # --- Required env validation for prod-like envs (staging/production) ---
    def _require(name: str):
        val = os.getenv(name) or app.config.get(name)
        if not val:
            raise RuntimeError(f"Missing required environment variable: {name}")
        return val

    if app_env in ("staging", "production"):
        # Enforce hard requirements at startup (not at import time)
        _require("SECRET_KEY")
        _require("DATABASE_URL")

    # --- Observability & Security ---
    init_logging(app)
    init_sentry(app)

    # Apply HTTPS, HSTS & CSP only in staging/production
    if app_env in ("staging", "production"):
        init_security(app)

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db, directory="migrations")
    csrf.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)

    # One storage (and cache) per process, owned by the app
    storage = init_storage(app)

    # Blueprints (explicit, consistent prefixes)
    from .blueprints.auth import bp as auth_bp
    from .blueprints.api import bp as api_bp

    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(api_bp, url_prefix="/api")

    @limiter.exempt
    @app.get("/healthz")
    def healthz():
        return {"status": "ok", "cache": storage.cache_stats()}, 200

    # Error handlers: the API speaks JSON everywhere
    @app.errorhandler(400)
    def bad_request(e):
        return _error(400, "bad_request", getattr(e, "description", None))

    @app.errorhandler(401)
    def unauthorized(e):
        return _error(401, "unauthorized")

    @app.errorhandler(403)
    def forbidden(e):
        return _error(403, "forbidden")

    @app.errorhandler(404)
    def not_found(e):
        return _error(404, "not_found")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return _error(405, "method_not_allowed")

    # CSRF error handler (clean 400 instead of generic 500)
    from flask_wtf.csrf import CSRFError

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        return _error(400, "csrf_failed", e.description)

    # 429 Too Many Requests with Retry-After
    @app.errorhandler(429)
    def too_many_requests(e):
        retry_after = getattr(e, "retry_after", None)
        headers = {}
        if retry_after is not None:
            headers["Retry-After"] = str(int(retry_after))
        return _error(429, "rate_limited", headers=headers)

    @app.errorhandler(StoreUnavailableError)
    def store_unavailable(e):
        app.logger.error(
            "store unavailable on %s %s: %s", request.method, request.path, e,
            extra={"event": "store_unavailable_response"},
        )
        return _error(503, "store_unavailable", str(e))

    @app.errorhandler(ConstraintViolationError)
    def constraint_violation(e):
        return (
            {"error": "invalid_data", "code": 400, "message": "Invalid data", "errors": [str(e)]},
            400,
        )

    @app.errorhandler(500)
    def server_error(e):
        return _error(500, "server_error")

    login_manager.unauthorized_handler(lambda: _error(401, "unauthorized"))

    # CLI commands (ops-grade utilities)
    from .cli import register_cli
    register_cli(app)

    return app
