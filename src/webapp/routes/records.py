from __future__ import annotations

from flask import Blueprint, abort, jsonify, request

from flowinvest.database.store import COLLECTIONS
from flowinvest.exceptions import RequestError
from webapp.utils import json_body, record_store

bp = Blueprint("records", __name__, url_prefix="/api/records")


def _collection(name: str) -> str:
    if name not in COLLECTIONS:
        abort(404)
    return name


def _owner_id() -> str:
    owner_id = (request.headers.get("X-Owner-Id") or "").strip()
    if not owner_id:
        raise RequestError("Missing owner", "Send the owner id in the X-Owner-Id header")
    return owner_id


@bp.get("/<collection>")
async def query_records(collection: str):
    """List the owner's records in a collection, newest first."""
    records = await record_store().query_records(_collection(collection), _owner_id())
    return jsonify({"data": records})


@bp.post("/<collection>")
async def save_record(collection: str):
    record_id = await record_store().save_record(_collection(collection), _owner_id(), json_body())
    return jsonify({"id": record_id}), 201


@bp.delete("/<collection>/<int:record_id>")
async def delete_record(collection: str, record_id: int):
    deleted = await record_store().delete_record(_collection(collection), _owner_id(), record_id)
    if not deleted:
        abort(404)
    return "", 204
