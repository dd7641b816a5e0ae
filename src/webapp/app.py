from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from flask import Flask, Response, jsonify
from werkzeug.exceptions import HTTPException

from flowinvest.config import Settings, get_settings
from flowinvest.database.session import build_record_store
from flowinvest.exceptions import ExtractionError, FlowInvestError, UpstreamError
from flowinvest.services.llm_client import LLMClient
from webapp.routes import register_blueprints

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,OPTIONS,PATCH,DELETE,POST,PUT",
    "Access-Control-Allow-Headers": (
        "X-CSRF-Token, X-Requested-With, Accept, Accept-Version, Content-Length, Content-MD5, "
        "Content-Type, Date, X-Api-Version, X-Owner-Id"
    ),
}


def create_app(settings: Settings | None = None, llm_client: LLMClient | None = None) -> Flask:
    """
    Flask application factory.

    ``llm_client`` overrides the provider adapter otherwise built from settings
    on first use.
    """

    settings = settings or get_settings()
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    app = Flask(__name__)
    app.url_map.strict_slashes = False

    app.config.update(
        SETTINGS=settings,
        LLM_CLIENT=llm_client,
        RECORD_STORE=build_record_store(settings),
        MAX_CONTENT_LENGTH=settings.MAX_UPLOAD_BYTES * 10,
    )

    register_blueprints(app)
    _register_cors(app)
    _register_error_handlers(app)

    return app


def _register_cors(app: Flask) -> None:
    @app.after_request
    def _add_cors_headers(response: Response) -> Response:
        response.headers.update(CORS_HEADERS)
        return response


def _error_body(error: str, details: Any = None, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"error": error, "timestamp": datetime.now(timezone.utc).isoformat()}
    if details:
        body["details"] = str(details)
    body.update({key: value for key, value in extra.items() if value is not None})
    return body


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(FlowInvestError)
    def _handle_flowinvest_error(exc: FlowInvestError):
        settings: Settings = app.config["SETTINGS"]
        extra: dict[str, Any] = {}
        if isinstance(exc, UpstreamError):
            extra["code"] = exc.kind
        if settings.is_development:
            if isinstance(exc, ExtractionError):
                extra["rawResponse"] = exc.raw_text
            if isinstance(exc, UpstreamError):
                extra["providerDetails"] = exc.provider_details
        logger.warning("Request failed (%s): %s %s", exc.status_code, exc.message, exc.details or "")
        return jsonify(_error_body(exc.message, exc.details, **extra)), exc.status_code

    @app.errorhandler(405)
    def _method_not_allowed(exc: HTTPException):
        return jsonify(_error_body("Method not allowed")), 405

    @app.errorhandler(404)
    def _not_found(exc: HTTPException):
        return jsonify(_error_body("Not found")), 404

    @app.errorhandler(413)
    def _too_large(exc: HTTPException):
        return jsonify(_error_body("File upload failed", "Request body is too large")), 413

    @app.errorhandler(Exception)
    def _unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return jsonify(_error_body(exc.name, exc.description)), exc.code
        logger.exception("Unhandled error: %s", exc)
        settings: Settings = app.config["SETTINGS"]
        details = str(exc) if settings.is_development else None
        return jsonify(_error_body("An unexpected server error occurred.", details)), 500
