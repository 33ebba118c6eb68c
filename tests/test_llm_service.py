from types import SimpleNamespace

import pytest

from core.errors import ExtractionError, UpstreamAPIError
from services.llm_service import LLMService, parse_json_output


def test_parse_plain_and_fenced_json():
    assert parse_json_output('{"operations": []}') == {"operations": []}
    assert parse_json_output('```json\n{"selectedId": "4"}\n```') == {"selectedId": "4"}


def test_parse_json_surrounded_by_prose():
    text = 'Sure! Here it is: {"operations": [{"action": "delete"}]} Hope that helps.'
    assert parse_json_output(text) == {"operations": [{"action": "delete"}]}


def test_non_json_raises_with_raw_text():
    with pytest.raises(ExtractionError) as exc:
        parse_json_output("I cannot help with that")
    assert exc.value.raw_output == "I cannot help with that"
    assert "I cannot help with that" in str(exc.value)


def test_json_array_is_not_an_object():
    with pytest.raises(ExtractionError):
        parse_json_output("[1, 2, 3]")


class _FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        message = SimpleNamespace(content=self.content)
        usage = SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=usage)


def _client(content):
    completions = _FakeCompletions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


@pytest.mark.asyncio
async def test_generate_sends_schema_and_tracks_usage():
    client, completions = _client('{"operations": []}')
    service = LLMService(api_key="sk-test", model="gpt-test", client=client)

    result = await service.generate("add a company", {"type": "object"})

    assert result == {"operations": []}
    assert completions.kwargs["model"] == "gpt-test"
    assert completions.kwargs["response_format"] == {"type": "json_object"}
    assert '{"type": "object"}' in completions.kwargs["messages"][0]["content"]
    assert completions.kwargs["messages"][1]["content"] == "add a company"
    assert service.usage == {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}


@pytest.mark.asyncio
async def test_generate_surfaces_unparseable_reply():
    client, _ = _client("not json at all")
    service = LLMService(api_key="sk-test", client=client)
    with pytest.raises(ExtractionError) as exc:
        await service.generate("prompt", {})
    assert exc.value.raw_output == "not json at all"


@pytest.mark.asyncio
async def test_missing_api_key_is_an_upstream_error():
    service = LLMService(api_key=None)
    with pytest.raises(UpstreamAPIError):
        await service.generate("prompt", {})
