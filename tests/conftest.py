"""
Test configuration.

We try to load pytest-asyncio so pytest recognizes asyncio_mode. If the plugin
isn't available in the active interpreter, we warn but do not hard-fail.
"""

from __future__ import annotations

import importlib
import warnings
from typing import Any, Callable

import pytest

try:
    importlib.import_module("pytest_asyncio")
except ImportError:
    warnings.warn(
        "pytest-asyncio is not installed in this interpreter; async tests may be limited.",
        RuntimeWarning,
        stacklevel=1,
    )
    pytest_plugins: list[str] = []
else:
    pytest_plugins = ["pytest_asyncio"]


class ScriptedLLMClient:
    """
    Fake LLM client replaying canned responses.

    Each entry is returned in call order (the last one repeats). Entries may be
    strings, exceptions to raise, or callables receiving the messages.
    """

    provider = "fake"
    model = "fake-model"

    def __init__(self, *responses: str | Exception | Callable[[list[dict[str, Any]]], str]):
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def complete(self, messages, **kwargs) -> str:
        self.calls.append({"messages": messages, **kwargs})
        response = self.responses[min(len(self.calls), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(messages)
        return response


@pytest.fixture
def scripted_client() -> type[ScriptedLLMClient]:
    return ScriptedLLMClient
