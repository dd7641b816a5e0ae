"""
Flask web interface for FlowInvest.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover - hints only
    from flask import Flask


def create_app(*args: Any, **kwargs: Any) -> "Flask":
    """
    Lazy import wrapper to avoid pulling Flask unless needed.
    """

    from .app import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = ["create_app"]
