"""Model identifier → provider classification.

Pure lookups only: an exact table, an ordered list of prefix patterns, and a
default provider for unrecognized names from the default vendor.
"""

from __future__ import annotations

from enum import Enum
import re


class ProviderId(str, Enum):
    """Closed set of supported backend families."""

    GEMINI = "gemini"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    DEEPSEEK = "deepseek"
    QWEN = "qwen"
    MOONSHOT = "moonshot"
    GROQ = "groq"
    MISTRAL = "mistral"
    BAIDU = "baidu"


DEFAULT_PROVIDER = ProviderId.GEMINI

_MODEL_TO_PROVIDER: dict[str, ProviderId] = {
    # OpenAI
    "gpt-4o": ProviderId.OPENAI,
    "gpt-4o-mini": ProviderId.OPENAI,
    "gpt-4": ProviderId.OPENAI,
    "gpt-4-turbo": ProviderId.OPENAI,
    "gpt-3.5-turbo": ProviderId.OPENAI,
    "o1": ProviderId.OPENAI,
    "o3-mini": ProviderId.OPENAI,
    # Anthropic
    "claude-opus-4-20250514": ProviderId.ANTHROPIC,
    "claude-sonnet-4-20250514": ProviderId.ANTHROPIC,
    "claude-3-7-sonnet-20250219": ProviderId.ANTHROPIC,
    "claude-3-7-sonnet-latest": ProviderId.ANTHROPIC,
    "claude-3-5-sonnet-20241022": ProviderId.ANTHROPIC,
    "claude-3-5-sonnet-latest": ProviderId.ANTHROPIC,
    "claude-3-5-haiku-20241022": ProviderId.ANTHROPIC,
    "claude-3-5-haiku-latest": ProviderId.ANTHROPIC,
    "claude-3-opus-20240229": ProviderId.ANTHROPIC,
    "claude-3-haiku-20240307": ProviderId.ANTHROPIC,
    # DeepSeek
    "deepseek-chat": ProviderId.DEEPSEEK,
    "deepseek-coder": ProviderId.DEEPSEEK,
    "deepseek-reasoner": ProviderId.DEEPSEEK,
    # Qwen
    "qwen-turbo": ProviderId.QWEN,
    "qwen-plus": ProviderId.QWEN,
    "qwen-max": ProviderId.QWEN,
    "qwq-32b-preview": ProviderId.QWEN,
    "qvq-72b-preview": ProviderId.QWEN,
    "qwen2.5-72b-instruct": ProviderId.QWEN,
    "qwen-vl-plus": ProviderId.QWEN,
    "qwen-vl-max": ProviderId.QWEN,
    # Moonshot
    "kimi-k2-0711-preview": ProviderId.MOONSHOT,
    "moonshot-v1-8k": ProviderId.MOONSHOT,
    "moonshot-v1-32k": ProviderId.MOONSHOT,
    "moonshot-v1-128k": ProviderId.MOONSHOT,
    # Gemini
    "gemini-1.5-pro": ProviderId.GEMINI,
    "gemini-1.5-flash": ProviderId.GEMINI,
    "gemini-2.0-flash": ProviderId.GEMINI,
    "gemini-2.5-pro": ProviderId.GEMINI,
    "gemini-2.5-flash": ProviderId.GEMINI,
    # Groq
    "llama-3.1-8b-instant": ProviderId.GROQ,
    "llama-3.1-70b-versatile": ProviderId.GROQ,
    "mixtral-8x7b-32768": ProviderId.GROQ,
    # Mistral
    "mistral-small-latest": ProviderId.MISTRAL,
    "mistral-medium-latest": ProviderId.MISTRAL,
    "mistral-large-latest": ProviderId.MISTRAL,
    # Baidu Qianfan
    "ernie-4.5-turbo-128k": ProviderId.BAIDU,
    "ernie-4.0-turbo-8k": ProviderId.BAIDU,
    "ernie-3.5-8k": ProviderId.BAIDU,
    "ernie-speed-128k": ProviderId.BAIDU,
}

# Ordered: first match wins.
_PROVIDER_PATTERNS: tuple[tuple[re.Pattern[str], ProviderId], ...] = (
    (re.compile(r"^gpt-", re.IGNORECASE), ProviderId.OPENAI),
    (re.compile(r"^o\d+(-|$)", re.IGNORECASE), ProviderId.OPENAI),
    (re.compile(r"^claude-", re.IGNORECASE), ProviderId.ANTHROPIC),
    (re.compile(r"^deepseek-", re.IGNORECASE), ProviderId.DEEPSEEK),
    (re.compile(r"^qwen", re.IGNORECASE), ProviderId.QWEN),
    (re.compile(r"^qwq-", re.IGNORECASE), ProviderId.QWEN),
    (re.compile(r"^qvq-", re.IGNORECASE), ProviderId.QWEN),
    (re.compile(r"^(kimi-|moonshot-)", re.IGNORECASE), ProviderId.MOONSHOT),
    (re.compile(r"^gemini-", re.IGNORECASE), ProviderId.GEMINI),
    (re.compile(r"^llama-", re.IGNORECASE), ProviderId.GROQ),
    (re.compile(r"^mixtral-", re.IGNORECASE), ProviderId.GROQ),
    (re.compile(r"^(mistral-|codestral-)", re.IGNORECASE), ProviderId.MISTRAL),
    (re.compile(r"^ernie-", re.IGNORECASE), ProviderId.BAIDU),
)

_NATIVE_TOKEN_COUNTING: frozenset[ProviderId] = frozenset(
    {ProviderId.GEMINI, ProviderId.ANTHROPIC}
)

DEFAULT_CONTEXT_LIMIT = 4_096


def classify(model_id: str) -> ProviderId:
    """Map a model identifier to its provider.

    Exact table first, then the ordered prefix patterns, then the default
    provider so new model names from the default vendor keep working.
    """
    exact = _MODEL_TO_PROVIDER.get(model_id)
    if exact is not None:
        return exact

    for pattern, provider in _PROVIDER_PATTERNS:
        if pattern.search(model_id):
            return provider

    return DEFAULT_PROVIDER


def supports_native_token_counting(provider: ProviderId) -> bool:
    """Whether *provider* exposes a token counting endpoint."""
    return provider in _NATIVE_TOKEN_COUNTING


def approximate_context_limit(model_id: str) -> int:
    """Return a conservative context-window estimate for *model_id*."""
    provider = classify(model_id)
    name = model_id.lower()

    if provider is ProviderId.OPENAI:
        if "gpt-4o" in name:
            return 128_000
        if "gpt-4" in name:
            return 8_192
        return DEFAULT_CONTEXT_LIMIT
    if provider is ProviderId.ANTHROPIC:
        return 200_000
    if provider is ProviderId.DEEPSEEK:
        return 32_768
    if provider is ProviderId.QWEN:
        if "turbo" in name:
            return 1_008_192
        if "plus" in name or "2.5" in name:
            return 131_072
        return 32_768
    if provider is ProviderId.MOONSHOT:
        return 128_000
    if provider is ProviderId.GEMINI:
        if "1.5-pro" in name:
            return 2_097_152
        return 1_048_576
    if provider in (ProviderId.GROQ, ProviderId.MISTRAL):
        return 32_768
    if provider is ProviderId.BAIDU:
        return 128_000 if "128k" in name else 8_000
    return DEFAULT_CONTEXT_LIMIT
