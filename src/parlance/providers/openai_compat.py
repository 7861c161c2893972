"""OpenAI-compatible provider families.

Each family speaks the Chat Completions wire format at its own endpoint.
``<PROVIDER>_BASE_URL`` overrides the default endpoint.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from parlance.providers.classifier import ProviderId
from parlance.providers.openai import OpenAIProvider

if TYPE_CHECKING:
    from parlance.messages import ChatRequest


class _CompatProvider(OpenAIProvider):
    max_tokens_param = "max_tokens"


class DeepSeekProvider(_CompatProvider):
    """DeepSeek. Reasoner models reject sampling parameters."""

    provider_id = ProviderId.DEEPSEEK
    default_base_url = "https://api.deepseek.com"

    def _sampling_kwargs(self, request: ChatRequest) -> dict[str, Any]:
        if "reasoner" in request.model.lower():
            return {}
        return super()._sampling_kwargs(request)


class QwenProvider(_CompatProvider):
    """Alibaba Qwen via DashScope compatible mode."""

    provider_id = ProviderId.QWEN
    default_base_url = "https://dashscope.aliyuncs.com/compatible-mode/v1"


class MoonshotProvider(_CompatProvider):
    """Moonshot (Kimi)."""

    provider_id = ProviderId.MOONSHOT
    default_base_url = "https://api.moonshot.cn/v1"


class GroqProvider(_CompatProvider):
    provider_id = ProviderId.GROQ
    default_base_url = "https://api.groq.com/openai/v1"


class MistralProvider(_CompatProvider):
    provider_id = ProviderId.MISTRAL
    default_base_url = "https://api.mistral.ai/v1"


class BaiduProvider(_CompatProvider):
    """Baidu Qianfan (ERNIE) v2 endpoint."""

    provider_id = ProviderId.BAIDU
    default_base_url = "https://qianfan.baidubce.com/v2"
