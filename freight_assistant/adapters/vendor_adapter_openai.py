"""OpenAI vendor adapter for Chat Completions with function calling."""

import logging
import time
from typing import List, Dict, Any, Optional
from openai import AsyncOpenAI

from freight_assistant.infra.config import config
from freight_assistant.infra.error_handler import ConfigurationError, retry_with_backoff, wrap_llm_error
from freight_assistant.infra.metrics import llm_calls_total, llm_call_duration, llm_tokens_total
from freight_assistant.models.routing import ModelTier
from freight_assistant.models.tool import ToolDefinition

logger = logging.getLogger(__name__)


def build_openai_tools(tools: List[ToolDefinition]) -> List[Dict[str, Any]]:
    """
    Convert canonical ToolDefinition objects to OpenAI tool schema.

    Args:
        tools: List of canonical ToolDefinition objects

    Returns:
        List of OpenAI tool dicts in OpenAI format
    """
    openai_tools = []
    for tool in tools:
        openai_tool = {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters_schema or {},
            }
        }
        openai_tools.append(openai_tool)
    return openai_tools


def model_for_tier(tier: ModelTier) -> str:
    """Map a model tier to the configured model name."""
    if tier == ModelTier.FAST:
        return config.FAST_MODEL
    return config.CAPABLE_MODEL


def normalize_completion(response_obj: Any) -> Dict[str, Any]:
    """Convert an SDK ChatCompletion into the plain dict used by the agent loop."""
    return {
        "id": response_obj.id,
        "model": response_obj.model,
        "choices": [
            {
                "index": choice.index,
                "message": {
                    "role": choice.message.role,
                    "content": choice.message.content,
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": tc.type,
                            "function": {
                                "name": tc.function.name,
                                "arguments": tc.function.arguments,
                            }
                        }
                        for tc in (choice.message.tool_calls or [])
                    ] if choice.message.tool_calls else None,
                },
                "finish_reason": choice.finish_reason,
            }
            for choice in response_obj.choices
        ],
        "usage": {
            "prompt_tokens": response_obj.usage.prompt_tokens,
            "completion_tokens": response_obj.usage.completion_tokens,
            "total_tokens": response_obj.usage.total_tokens,
        } if response_obj.usage else None,
    }


class OpenAIChatClient:
    """Chat Completions client shared by the agent loop and the filter compiler."""

    def __init__(self, max_retries: int = 2):
        self._client = None
        self.max_retries = max_retries

    @property
    def client(self) -> AsyncOpenAI:
        """Lazy initialization of OpenAI client."""
        if self._client is None:
            if not config.OPENAI_API_KEY:
                raise ConfigurationError("OPENAI_API_KEY not configured")
            kwargs = {"api_key": config.OPENAI_API_KEY}
            if config.OPENAI_BASE_URL:
                kwargs["base_url"] = config.OPENAI_BASE_URL
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    def ensure_configured(self) -> None:
        """Raise ConfigurationError when credentials are missing."""
        _ = self.client

    async def complete(
        self,
        tier: ModelTier,
        messages: List[Dict[str, Any]],
        tools: Optional[List[ToolDefinition]] = None,
        max_tokens: int = 4096,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Send one chat completion request.

        Args:
            tier: Model tier; mapped to a model name by configuration
            messages: OpenAI chat messages, system prompt first
            tools: Optional tool catalog
            max_tokens: Output token cap
            response_format: Optional response format (e.g. JSON mode)

        Returns:
            Normalized completion dict

        Raises:
            AssistantError: Wrapped provider error after retries
        """
        client = self.client
        model = model_for_tier(tier)

        request_params: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
        }
        if tools:
            request_params["tools"] = build_openai_tools(tools)
            request_params["tool_choice"] = "auto"
        if response_format:
            request_params["response_format"] = response_format

        async def _call():
            try:
                return await client.chat.completions.create(**request_params)
            except Exception as e:
                raise wrap_llm_error(e, "openai")

        def _on_retry(error: Exception, attempt: int) -> None:
            logger.warning(
                f"Retrying OpenAI call (attempt {attempt}): {error}",
                extra={"model": model, "tier": tier.value},
            )

        start_time = time.time()
        try:
            response_obj = await retry_with_backoff(
                _call,
                max_retries=self.max_retries,
                on_retry=_on_retry,
            )
        except Exception:
            llm_calls_total.labels(tier=tier.value, model=model, status="failure").inc()
            raise
        finally:
            llm_call_duration.labels(tier=tier.value, model=model).observe(time.time() - start_time)

        llm_calls_total.labels(tier=tier.value, model=model, status="success").inc()
        result = normalize_completion(response_obj)
        usage = result.get("usage")
        if usage:
            llm_tokens_total.labels(model=model, type="input").inc(usage.get("prompt_tokens") or 0)
            llm_tokens_total.labels(model=model, type="output").inc(usage.get("completion_tokens") or 0)
        return result


openai_chat_client = OpenAIChatClient()
