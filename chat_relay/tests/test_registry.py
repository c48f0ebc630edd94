import dataclasses

import pytest

from chat_relay.dialects.adapter import Dialect
from chat_relay.exceptions import ModelNotFound
from chat_relay.registry import MODEL_REGISTRY, RoutingClass, available_models, resolve


def test_resolve_known_model():
    entry = resolve("GPT-5.2")
    assert entry.upstream_id == "gpt-5.2"
    assert entry.preferred_dialect is Dialect.RESPONSES
    assert entry.fallback_dialect is Dialect.CHAT
    assert entry.routing_class is RoutingClass.OPENAI


def test_resolve_is_idempotent():
    assert resolve("Gemini 3 Pro") == resolve("Gemini 3 Pro")
    assert resolve("Gemini 3 Pro") is resolve("Gemini 3 Pro")


def test_resolve_is_case_sensitive():
    with pytest.raises(ModelNotFound) as exc_info:
        resolve("gpt-5.2")
    assert exc_info.value.status_code == 400
    assert "GPT-5.2" in exc_info.value.detail


def test_chat_only_model_has_no_fallback():
    entry = resolve("GPT-4o")
    assert entry.supported_dialects == frozenset({Dialect.CHAT})
    assert entry.fallback_dialect is None


def test_registry_is_read_only():
    with pytest.raises(TypeError):
        MODEL_REGISTRY["New"] = resolve("GPT-4o")
    with pytest.raises(dataclasses.FrozenInstanceError):
        resolve("GPT-4o").upstream_id = "other"


def test_every_routing_class_is_used():
    classes = {resolve(name).routing_class for name in available_models()}
    assert classes == set(RoutingClass)
