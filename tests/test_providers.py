"""
Unit tests for provider and model inference.
"""

import pytest

from proxy_usage.core.providers import (
    detect_provider_from_model,
    detect_provider_from_path,
    extract_model_from_path,
    resolve_provider,
)


class TestDetectFromModel:
    """Test provider detection from model names."""

    @pytest.mark.parametrize("model,provider", [
        ("claude-opus-4-5-thinking", "anthropic"),
        ("gpt-5", "openai"),
        ("gpt-5-codex", "openai"),
        ("o3-mini", "openai"),
        ("gemini-2.5-pro", "gemini"),
        ("qwen3-coder-plus", "qwen"),
        ("deepseek-chat", "deepseek"),
        ("grok-4", "xai"),
        ("glm-4.6", "zhipu"),
        ("copilot-gpt-4o", "copilot"),
        ("openrouter/anthropic/claude-sonnet-4", "anthropic"),
        ("Claude-Sonnet", "anthropic"),
    ])
    def test_known_models(self, model, provider):
        assert detect_provider_from_model(model) == provider

    @pytest.mark.parametrize("model", ["", "unknown", "mystery-model"])
    def test_unknown_models(self, model):
        assert detect_provider_from_model(model) == "unknown"


class TestDetectFromPath:
    """Test provider detection from request paths."""

    def test_explicit_provider_segment(self):
        assert detect_provider_from_path("/api/provider/Kimi/v1/chat/completions") == "kimi"

    @pytest.mark.parametrize("path,provider", [
        ("/v1/messages", "anthropic"),
        ("/v1/chat/completions", "openai"),
        ("/v1beta/models/x:streamGenerateContent", "gemini"),
        ("/openai/v1/responses", "openai"),
    ])
    def test_route_markers(self, path, provider):
        assert detect_provider_from_path(path) == provider

    def test_no_marker(self):
        assert detect_provider_from_path("/v1/embeddings") is None


class TestResolveProvider:
    """Test model-first provider resolution."""

    def test_model_takes_precedence_over_path(self):
        assert resolve_provider("claude-x", "/v1/some/openai/route") == "anthropic"

    def test_path_used_when_model_unknown(self):
        assert resolve_provider("unknown", "/v1/some/openai/route") == "openai"

    def test_unknown_when_nothing_matches(self):
        assert resolve_provider("mystery", "/v1/embeddings") == "unknown"


class TestExtractModel:
    """Test model extraction from Gemini-style paths."""

    def test_generate_content_path(self):
        assert extract_model_from_path("/v1beta/models/gemini-3-pro:generateContent") == "gemini-3-pro"

    def test_no_model_segment(self):
        assert extract_model_from_path("/v1/messages") is None
