from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Dict

from playbook_review.errors import GenerationTimeoutError
from playbook_review.generation.json_payload import parse_json_payload


@dataclass(slots=True, frozen=True)
class ModelOptions:
    model: str = "o3-mini"
    temperature: float | None = None
    max_tokens: int | None = None


@dataclass(slots=True)
class GenerationOutput:
    """Normalized response returned by every generator."""

    generator_id: str
    text: str
    model: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class BaseGenerator(ABC):
    """Common interface for the external text-generation service."""

    def __init__(self, generator_id: str, *, timeout_seconds: float | None = None) -> None:
        self.generator_id = generator_id
        self.timeout_seconds = timeout_seconds

    async def generate(
        self,
        system_prompt: str,
        user_content: str,
        *,
        options: ModelOptions | None = None,
    ) -> GenerationOutput:
        """Run one generation call under the configured deadline."""

        opts = options or ModelOptions()
        start = perf_counter()
        call = self._generate(system_prompt, user_content, options=opts)
        if self.timeout_seconds:
            try:
                text, info = await asyncio.wait_for(call, timeout=self.timeout_seconds)
            except asyncio.TimeoutError as exc:
                raise GenerationTimeoutError(self.timeout_seconds) from exc
        else:
            text, info = await call
        metadata = dict(info or {})
        metadata.setdefault("duration_ms", (perf_counter() - start) * 1000)
        return GenerationOutput(generator_id=self.generator_id, text=text, model=opts.model, metadata=metadata)

    async def generate_json(
        self,
        system_prompt: str,
        user_content: str,
        *,
        options: ModelOptions | None = None,
    ) -> Any:
        output = await self.generate(system_prompt, user_content, options=options)
        return parse_json_payload(output.text)

    @abstractmethod
    async def _generate(
        self,
        system_prompt: str,
        user_content: str,
        *,
        options: ModelOptions,
    ) -> tuple[str, Dict[str, Any]]:
        """Subclass implementation returning generated text and optional metadata."""


__all__ = ["BaseGenerator", "GenerationOutput", "ModelOptions"]
