"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, which allows:
           - Multiple isolated test app instances
           - `alembic` to import the models without starting the server

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure the `nexledger` logger from LOG_LEVEL
  3. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  4. Register the settlement notifier under app.extensions
  5. Register all route blueprints under /api/v1
  6. Register global error handlers (AppError → JSON, Exception → 500)
  7. Register a custom JSON provider to serialise Decimal as string
     (monetary amounts are transmitted as strings, never JS numbers)
"""

from __future__ import annotations

import logging
import traceback
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

from nexledger.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────

class DecimalJSONProvider(DefaultJSONProvider):
    """
    Extends Flask's default JSON provider to serialise Decimal as str.

    Example: Decimal("10.50") → "10.50" (not 10.5 or 10.500000001)
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from nexledger.app.extensions import db, ma
    from nexledger.app.notifier import LoggingNotifier

    db.init_app(app)
    ma.init_app(app)
    app.extensions["nexledger.notifier"] = LoggingNotifier()

    # ── Model registration ─────────────────────────────────────────────────
    # Populates SQLAlchemy's MetaData; the names are unused.
    with app.app_context():
        from nexledger.app.models import (  # noqa: F401
            debt,
            expense,
            group,
            membership,
            split,
        )

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    return app


def _configure_logging(app: Flask) -> None:
    """
    Sets the level of the `nexledger` logger tree from LOG_LEVEL.

    Modules log through logging.getLogger(__name__), so everything under
    nexledger.* inherits this level and handler.
    """
    package_logger = logging.getLogger("nexledger")
    package_logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(name)s] %(message)s"
        ))
        package_logger.addHandler(handler)


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    Every blueprint serves both group-scoped (/groups/:id/...) and other
    paths (/expenses/:id, /users/:id/...), so each is mounted at /api/v1
    and declares full resource paths itself.
    """
    from nexledger.app.routes.balances import balances_bp
    from nexledger.app.routes.expenses import expenses_bp
    from nexledger.app.routes.settlements import settlements_bp

    app.register_blueprint(expenses_bp,    url_prefix="/api/v1")
    app.register_blueprint(balances_bp,    url_prefix="/api/v1")
    app.register_blueprint(settlements_bp, url_prefix="/api/v1")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the correct HTTP status
      ValidationError → the FIRST marshmallow field error, as MISSING_FIELD /
                        INVALID_FIELD / a registered code (400)
      HTTPException   → werkzeug's status with a JSON body (404 route, 405, bad JSON)
      Exception       → INTERNAL_ERROR (500); traceback logged, never returned
    """
    from nexledger.app.errors import AppError, ErrorCode

    known_codes = {
        value for name, value in vars(ErrorCode).items() if not name.startswith("_")
    }

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """
        Converts an AppError raised anywhere in the request lifecycle
        (middleware, service, store) into the standard error envelope.

        Routes never catch AppError — they let it propagate here.
        """
        if error.http_status >= 500:
            app.logger.error("%r", error)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Returns the first error from the marshmallow messages dict, e.g.
        {"amount": ["INVALID_AMOUNT_PRECISION"]}. A message that is itself a
        registered code is used as the code.
        """
        messages = error.messages

        field = None
        raw_message = "Invalid input."

        if isinstance(messages, dict):
            for field_name, field_errors in messages.items():
                field = field_name if field_name != "_schema" else None
                if isinstance(field_errors, list):
                    raw_message = field_errors[0] if field_errors else "Invalid value."
                else:
                    raw_message = str(field_errors)
                break
        elif isinstance(messages, list) and messages:
            raw_message = messages[0]

        if raw_message in known_codes:
            code = raw_message
            message = _code_to_message(code)
        elif str(raw_message).startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        body = {"error": {"code": code, "message": message}}
        if field is not None:
            body["error"]["field"] = field
        return jsonify(body), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({
            "error": {
                "code": (error.name or "HTTP_ERROR").upper().replace(" ", "_"),
                "message": error.description,
            }
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions and returns a generic 500 response.
        Stack traces never leave the server in the response body.
        """
        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development.

    Enabled when DEBUG or TESTING is true so a frontend served from another
    local port can call the API with the X-User-Id header.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "X-User-Id, Content-Type"

        return response


def _code_to_message(code: str) -> str:
    """
    Default message for a ValidationError whose message IS an error code
    constant (e.g. INVALID_AMOUNT_PRECISION raised by a schema validator).
    """
    _messages = {
        "INVALID_AMOUNT_PRECISION": "Amount must have at most 2 decimal places.",
        "INVALID_SPLIT_POLICY": "split_policy must be 'equally', 'percentage' or 'amount'.",
        "INVALID_SETTLEMENT_MODE": "mode must be 'simplified' or 'detailed'.",
        "DUPLICATE_PARTICIPANT": "The same user_id appears more than once in the participants array.",
    }
    return _messages.get(code, "Invalid input.")
