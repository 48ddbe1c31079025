import json
import os
import sys
from typing import Any, Callable, List, Sequence

import pytest

# Ensure 'finreview' (under backend/) is importable as top-level
PROJECT_BACKEND = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_BACKEND not in sys.path:
    sys.path.insert(0, PROJECT_BACKEND)

from finreview.ai.providers.base import BaseProvider, ProviderResult  # noqa: E402
from finreview.ai.router import ResolvedConfig  # noqa: E402


class Refusal:
    def __init__(self, text: str = "I can't help with that"):
        self.text = text


class ScriptedProvider(BaseProvider):
    """Offline provider: replies come from a list (last one repeats) or a callable(prompt)."""

    name = "scripted"

    def __init__(self, replies: Sequence[Any] | Callable[[str], Any]):
        self.replies = replies
        self.prompts: List[str] = []

    def _next(self, prompt: str) -> Any:
        if callable(self.replies):
            return self.replies(prompt)
        idx = min(len(self.prompts) - 1, len(self.replies) - 1)
        return self.replies[idx]

    async def generate(self, prompt, *, system_prompt=None, images=(), model="", temperature=0.1, max_tokens=2000, timeout_seconds=20.0):
        self.prompts.append(prompt)
        reply = self._next(prompt)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, Refusal):
            return ProviderResult(raw_text="", model="scripted", provider=self.name, refusal=reply.text)
        text = reply if isinstance(reply, str) else json.dumps(reply)
        return ProviderResult(raw_text=text, model="scripted", provider=self.name)


def make_config(provider: BaseProvider) -> ResolvedConfig:
    return ResolvedConfig(provider=provider, model="scripted", temperature=0.1, max_tokens=2000, timeout_seconds=5.0)


@pytest.fixture
def scripted():
    """``scripted(*replies)`` -> (ResolvedConfig, ScriptedProvider)."""

    def _make(*replies: Any):
        if len(replies) == 1 and callable(replies[0]):
            provider = ScriptedProvider(replies[0])
        else:
            provider = ScriptedProvider(list(replies) or ["{}"])
        return make_config(provider), provider

    return _make


@pytest.fixture
def refusal():
    return Refusal


@pytest.fixture
def sqlite_db(monkeypatch, tmp_path):
    """Point DATABASE_URL at a fresh SQLite file for the test."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("AUDIT_ROOT", str(tmp_path / "audit"))
    from finreview.db import session as sess

    assert sess.get_engine() is not None
    yield tmp_path
    monkeypatch.delenv("DATABASE_URL", raising=False)
    sess.get_engine()
