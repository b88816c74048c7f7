from __future__ import annotations

from typing import Any, Callable, Dict, List

from llama_index.core.llms import ChatMessage, MessageRole
from llama_index.llms.openai import OpenAI
from openai import AsyncOpenAI

from playbook_review.interfaces.generator import BaseGenerator, ModelOptions


class OpenAIGenerator(BaseGenerator):
    """Chat-completions generator backed by ``AsyncOpenAI``."""

    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        generator_id: str = "openai",
        timeout_seconds: float | None = 180.0,
    ) -> None:
        super().__init__(generator_id, timeout_seconds=timeout_seconds)
        self._client = client

    async def _generate(
        self,
        system_prompt: str,
        user_content: str,
        *,
        options: ModelOptions,
    ) -> tuple[str, Dict[str, Any]]:
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_content})

        kwargs: Dict[str, Any] = {"model": options.model, "messages": messages}
        if options.temperature is not None:
            kwargs["temperature"] = options.temperature
        if options.max_tokens is not None:
            kwargs["max_completion_tokens"] = options.max_tokens

        response = await self._client.chat.completions.create(**kwargs)
        usage = getattr(response, "usage", None)
        info: Dict[str, Any] = {}
        if usage is not None:
            info["usage"] = {
                "prompt_tokens": getattr(usage, "prompt_tokens", 0),
                "completion_tokens": getattr(usage, "completion_tokens", 0),
                "total_tokens": getattr(usage, "total_tokens", 0),
            }
        return _response_message_text(response), info


class LlamaIndexGenerator(BaseGenerator):
    """Adapter for any llama_index LLM exposing ``achat`` or ``acomplete``.

    Pass a single ``llm`` to use it for every call, or an ``llm_factory`` that
    builds one LLM per requested model name.
    """

    def __init__(
        self,
        llm: Any = None,
        *,
        llm_factory: Callable[[ModelOptions], Any] | None = None,
        generator_id: str = "llama_index",
        timeout_seconds: float | None = 180.0,
    ) -> None:
        if llm is None and llm_factory is None:
            raise ValueError("Provide llm or llm_factory")
        super().__init__(generator_id, timeout_seconds=timeout_seconds)
        self._llm = llm
        self._factory = llm_factory
        self._by_model: Dict[str, Any] = {}

    @classmethod
    def for_openai(cls, api_key: str, *, timeout_seconds: float | None = 180.0) -> "LlamaIndexGenerator":
        def factory(options: ModelOptions) -> Any:
            kwargs: Dict[str, Any] = {"model": options.model, "api_key": api_key}
            if options.temperature is not None:
                kwargs["temperature"] = options.temperature
            if options.max_tokens is not None:
                kwargs["max_tokens"] = options.max_tokens
            return OpenAI(**kwargs)

        return cls(llm_factory=factory, timeout_seconds=timeout_seconds)

    def _llm_for(self, options: ModelOptions) -> Any:
        if self._factory is None:
            return self._llm
        key = f"{options.model}:{options.temperature}:{options.max_tokens}"
        if key not in self._by_model:
            self._by_model[key] = self._factory(options)
        return self._by_model[key]

    async def _generate(
        self,
        system_prompt: str,
        user_content: str,
        *,
        options: ModelOptions,
    ) -> tuple[str, Dict[str, Any]]:
        llm = self._llm_for(options)
        if hasattr(llm, "achat"):
            messages = []
            if system_prompt:
                messages.append(ChatMessage(role=MessageRole.SYSTEM, content=system_prompt))
            messages.append(ChatMessage(role=MessageRole.USER, content=user_content))
            completion = await llm.achat(messages)
        elif hasattr(llm, "acomplete"):
            prompt = f"{system_prompt}\n\n{user_content}" if system_prompt else user_content
            completion = await llm.acomplete(prompt)
        else:
            raise AttributeError("LLM must implement achat or acomplete APIs")
        return _extract_text(completion), {}


def _response_message_text(response: Any) -> str:
    choice = response.choices[0] if getattr(response, "choices", None) else None
    if not choice:
        return ""
    message = getattr(choice, "message", None)
    if message is None:
        return str(choice)
    content = getattr(message, "content", None)
    return content if isinstance(content, str) else ""


def _extract_text(completion: Any) -> str:
    if completion is None:
        return ""
    if isinstance(completion, str):
        return completion.strip()

    text = getattr(completion, "text", None)
    if isinstance(text, str) and text.strip():
        return text.strip()

    message = getattr(completion, "message", None)
    if message is not None:
        content = getattr(message, "content", None)
        if isinstance(content, str):
            return content.strip()

    return str(completion).strip()


__all__ = ["LlamaIndexGenerator", "OpenAIGenerator"]
