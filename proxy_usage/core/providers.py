"""
Provider and model inference.

Resolves the upstream vendor of a request from its model name or, failing
that, from URL path heuristics.
"""

import re
from typing import Optional, Tuple

UNKNOWN_PROVIDER = "unknown"

# Ordered (prefix, provider); first match wins so "copilot-gemini-..." is copilot
MODEL_PROVIDER_PREFIXES: Tuple[Tuple[str, str], ...] = (
    ("copilot-", "copilot"),
    ("claude", "anthropic"),
    ("gpt", "openai"),
    ("chatgpt", "openai"),
    ("codex", "openai"),
    ("o1", "openai"),
    ("o3", "openai"),
    ("o4", "openai"),
    ("text-embedding", "openai"),
    ("gemini", "gemini"),
    ("gemma", "gemini"),
    ("qwen", "qwen"),
    ("deepseek", "deepseek"),
    ("grok", "xai"),
    ("mistral", "mistral"),
    ("codestral", "mistral"),
    ("kimi", "kimi"),
    ("glm", "zhipu"),
    ("minimax", "minimax"),
)

# Ordered (path substring, provider) used when the model gives no answer
PATH_PROVIDER_MARKERS: Tuple[Tuple[str, str], ...] = (
    ("anthropic", "anthropic"),
    ("claude", "anthropic"),
    ("openai", "openai"),
    ("codex", "openai"),
    ("gemini", "gemini"),
    ("/v1beta", "gemini"),
    (":generatecontent", "gemini"),
    (":streamgeneratecontent", "gemini"),
    ("qwen", "qwen"),
    ("/v1/messages", "anthropic"),
    ("/chat/completions", "openai"),
)

_PROVIDER_SEGMENT_RE = re.compile(r"/api/provider/([A-Za-z0-9_.-]+)/")
_PATH_MODEL_RE = re.compile(r"/models/([^/:?\s]+)")


def detect_provider_from_model(model: str) -> str:
    """Infer the provider from a vendor-specific model name.

    Returns:
        Provider tag, or "unknown" if the model name is not recognized
    """
    name = (model or "").strip().lower()
    if not name or name == UNKNOWN_PROVIDER:
        return UNKNOWN_PROVIDER
    # Strip routing prefixes such as "openrouter/anthropic/claude-..."
    base = name.rsplit("/", 1)[-1]
    for prefix, provider in MODEL_PROVIDER_PREFIXES:
        if base.startswith(prefix) or name.startswith(prefix):
            return provider
    return UNKNOWN_PROVIDER


def detect_provider_from_path(path: str) -> Optional[str]:
    """Infer the provider from the request path.

    An explicit "/api/provider/<name>/" segment wins; otherwise well-known
    route fragments are checked in order.

    Returns:
        Provider tag, or None if nothing in the path identifies one
    """
    match = _PROVIDER_SEGMENT_RE.search(path)
    if match:
        return match.group(1).lower()
    lowered = path.lower()
    for marker, provider in PATH_PROVIDER_MARKERS:
        if marker in lowered:
            return provider
    return None


def extract_model_from_path(path: str) -> Optional[str]:
    """Extract the model from Gemini-style paths like /v1beta/models/<model>:generateContent."""
    match = _PATH_MODEL_RE.search(path)
    if match:
        return match.group(1)
    return None


def resolve_provider(model: str, path: str) -> str:
    """Resolve provider: model name first, path heuristics second, else unknown.

    The model name is vendor-specific, so it stays correct when the proxy
    forwards a request through another vendor's route.
    """
    provider = detect_provider_from_model(model)
    if provider != UNKNOWN_PROVIDER:
        return provider
    return detect_provider_from_path(path) or UNKNOWN_PROVIDER
