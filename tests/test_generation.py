from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from playbook_review.errors import GenerationParseError, GenerationTimeoutError
from playbook_review.generation.clients import LlamaIndexGenerator, OpenAIGenerator
from playbook_review.interfaces.generator import ModelOptions


class _FakeCompletions:
    def __init__(self, content: str) -> None:
        self.content = content
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.content)
        usage = SimpleNamespace(prompt_tokens=11, completion_tokens=7, total_tokens=18)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=usage)


def _fake_client(content: str) -> SimpleNamespace:
    completions = _FakeCompletions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


@pytest.mark.asyncio
async def test_openai_generator_builds_request_and_parses_json():
    client = _fake_client('```json\n{"noChanges": true}\n```')
    generator = OpenAIGenerator(client, timeout_seconds=5)

    payload = await generator.generate_json("", "amend this", options=ModelOptions(model="o3-mini", max_tokens=500))

    assert payload == {"noChanges": True}
    call = client.chat.completions.calls[0]
    assert call["model"] == "o3-mini"
    assert call["messages"] == [{"role": "user", "content": "amend this"}]
    assert call["max_completion_tokens"] == 500
    assert "temperature" not in call


@pytest.mark.asyncio
async def test_openai_generator_reports_usage_and_duration():
    client = _fake_client("hello")
    generator = OpenAIGenerator(client)

    output = await generator.generate("sys", "user", options=ModelOptions(model="gpt-4o", temperature=0.2))

    assert output.text == "hello"
    assert output.model == "gpt-4o"
    assert output.metadata["usage"]["total_tokens"] == 18
    assert output.metadata["duration_ms"] >= 0
    call = client.chat.completions.calls[0]
    assert call["messages"][0] == {"role": "system", "content": "sys"}
    assert call["temperature"] == 0.2


@pytest.mark.asyncio
async def test_generation_deadline_raises_timeout():
    class _SlowLLM:
        async def acomplete(self, prompt: str):
            await asyncio.sleep(1)
            return SimpleNamespace(text="late")

    generator = LlamaIndexGenerator(_SlowLLM(), timeout_seconds=0.01)

    with pytest.raises(GenerationTimeoutError) as excinfo:
        await generator.generate("", "prompt")
    assert excinfo.value.timeout_seconds == 0.01


@pytest.mark.asyncio
async def test_llama_index_generator_uses_chat_messages():
    class _ChatLLM:
        def __init__(self) -> None:
            self.messages = None

        async def achat(self, messages):
            self.messages = messages
            return SimpleNamespace(message=SimpleNamespace(content=' {"results": []} '))

    llm = _ChatLLM()
    generator = LlamaIndexGenerator(llm)

    payload = await generator.generate_json("system text", "user text")

    assert payload == {"results": []}
    assert [message.content for message in llm.messages] == ["system text", "user text"]


@pytest.mark.asyncio
async def test_llama_index_factory_builds_one_llm_per_model():
    built: list[str] = []

    class _CompleteLLM:
        async def acomplete(self, prompt: str):
            return "[]"

    def factory(options: ModelOptions):
        built.append(options.model)
        return _CompleteLLM()

    generator = LlamaIndexGenerator(llm_factory=factory)
    await generator.generate("", "a", options=ModelOptions(model="o3-mini"))
    await generator.generate("", "b", options=ModelOptions(model="o3-mini"))
    await generator.generate("", "c", options=ModelOptions(model="gpt-4o"))

    assert built == ["o3-mini", "gpt-4o"]


def test_llama_index_generator_requires_llm():
    with pytest.raises(ValueError):
        LlamaIndexGenerator()


@pytest.mark.asyncio
async def test_unparseable_output_surfaces_parse_error():
    generator = OpenAIGenerator(_fake_client("no json here"))
    with pytest.raises(GenerationParseError):
        await generator.generate_json("", "prompt")
