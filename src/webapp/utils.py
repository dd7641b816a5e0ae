"""
Shared helpers for the Flask request handlers.
"""

from __future__ import annotations

import json
from typing import Any, Sequence, TypeVar

from flask import current_app, request
from pydantic import BaseModel, ValidationError

from flowinvest.config import Settings
from flowinvest.database.store import RecordStore
from flowinvest.exceptions import PersistenceUnavailable, RequestError
from flowinvest.schemas.requests import InvestmentData, UserProfile
from flowinvest.services.llm_client import LLMClient, build_llm_client

ModelT = TypeVar("ModelT", bound=BaseModel)


def settings() -> Settings:
    return current_app.config["SETTINGS"]


def llm_client() -> LLMClient:
    """Return the configured LLM client, building it from settings on first use."""
    client = current_app.config.get("LLM_CLIENT")
    if client is None:
        client = build_llm_client(settings())
        current_app.config["LLM_CLIENT"] = client
    return client


def record_store() -> RecordStore:
    store = current_app.config.get("RECORD_STORE")
    if store is None:
        raise PersistenceUnavailable("Persistence is not configured", "Set DATABASE_URL to enable records")
    return store


def json_body() -> dict[str, Any]:
    """Return the JSON object body or raise a 400."""
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise RequestError("Request body is required", "Send a JSON object with Content-Type: application/json")
    return body


def parse_model(model: type[ModelT], value: Any, label: str) -> ModelT:
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        raise RequestError(f"Invalid {label}", _first_error(exc)) from exc


def parse_profile(value: Any, *, required: bool = True) -> UserProfile:
    """Accept a profile object or (from multipart forms) its JSON string."""
    if isinstance(value, str):
        try:
            value = json.loads(value) if value.strip() else None
        except json.JSONDecodeError as exc:
            raise RequestError("Invalid userProfile", "userProfile must be a JSON object") from exc
    if value is None:
        if required:
            raise RequestError("Missing required data", "userProfile is required")
        return UserProfile()
    if not isinstance(value, dict):
        raise RequestError("Invalid userProfile", "userProfile must be a JSON object")
    return parse_model(UserProfile, value, "userProfile")


def parse_investments(value: Any) -> list[InvestmentData]:
    if not isinstance(value, list) or not value:
        raise RequestError("No investments provided", "investments must be a non-empty array")
    return [parse_model(InvestmentData, item, "investment") for item in value]


def payloads(models: Sequence[BaseModel]) -> list[dict[str, Any]]:
    return [model.to_payload() for model in models]  # type: ignore[attr-defined]


def _first_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg')}" if location else str(error.get("msg"))
