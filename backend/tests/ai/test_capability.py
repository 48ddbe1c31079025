import asyncio

from finreview.ai.capability import CapabilityStatus, call_json
from finreview.ai.providers import MockProvider, get_provider
from finreview.ai.router import resolve


def test_call_json_statuses(scripted, refusal):
    cfg, _ = scripted({"ok": 1})
    assert asyncio.run(call_json(cfg, "p")).value == {"ok": 1}

    cfg, _ = scripted(TimeoutError("slow"))
    out = asyncio.run(call_json(cfg, "p"))
    assert out.status is CapabilityStatus.FAILED and out.error.startswith("provider_call_failed")

    cfg, _ = scripted(refusal("nope"))
    out = asyncio.run(call_json(cfg, "p"))
    assert out.status is CapabilityStatus.FAILED and "refusal" in out.flags

    cfg, _ = scripted("garbage")
    assert asyncio.run(call_json(cfg, "p")).flags == ["unparsable"]


def test_missing_key_falls_back_to_mock(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert isinstance(get_provider("openai"), MockProvider)
    assert isinstance(get_provider("gemini"), MockProvider)


def test_scope_override_beats_global(monkeypatch):
    monkeypatch.setenv("AI_PROVIDER", "mock")
    monkeypatch.setenv("AI_MODEL", "global-model")
    monkeypatch.setenv("AI_VALIDATE_MODEL", "validate-model")
    assert resolve("validate").model == "validate-model"
    assert resolve("extract").model == "global-model"
    assert resolve("extract", override_model="x").model == "x"


def test_mock_provider_reports_zero_latency():
    out = asyncio.run(MockProvider().generate("extract this form"))
    assert out.raw_text == "{}"
    assert out.latency_ms == 0.0
    assert out.prompt_tokens == 3
