import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from lib.error_handler import ProviderError
from lib.openai_client import OpenAIClient, parse_json_content


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def test_parse_json_content_handles_fences():
    assert parse_json_content('{"intent": "reminder"}') == {"intent": "reminder"}
    assert parse_json_content('```json\n{"intent": "reminder"}\n```') == {"intent": "reminder"}
    assert parse_json_content('```\n{"a": 1}\n```') == {"a": 1}


@pytest.mark.parametrize("content", ["not json", "[1, 2]", "```json\n{broken\n```"])
def test_parse_json_content_rejects_garbage(content):
    with pytest.raises(ProviderError):
        parse_json_content(content)


@pytest.mark.asyncio
async def test_complete_json_uses_json_mode():
    sdk = MagicMock()
    sdk.chat.completions.create.return_value = completion('{"intent": "simple_note"}')
    client = OpenAIClient(client=sdk, timeout=5)

    data = await client.complete_json("Classify", model="m", system="You classify")

    assert data == {"intent": "simple_note"}
    kwargs = sdk.chat.completions.create.call_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["messages"][0] == {"role": "system", "content": "You classify"}


@pytest.mark.asyncio
async def test_complete_text_strips_reply():
    sdk = MagicMock()
    sdk.chat.completions.create.return_value = completion("  action \n")
    client = OpenAIClient(client=sdk, timeout=5)

    assert await client.complete_text([{"role": "user", "content": "hi"}], model="m") == "action"


@pytest.mark.asyncio
async def test_sdk_errors_become_provider_errors():
    sdk = MagicMock()
    sdk.chat.completions.create.side_effect = ConnectionError("reset")
    client = OpenAIClient(client=sdk, timeout=5)

    with pytest.raises(ProviderError):
        await client.complete_text([{"role": "user", "content": "hi"}], model="m")


@pytest.mark.asyncio
async def test_slow_provider_times_out():
    sdk = MagicMock()
    sdk.chat.completions.create.side_effect = lambda **kwargs: time.sleep(0.3) or completion("late")
    client = OpenAIClient(client=sdk, timeout=0.05)

    with pytest.raises(ProviderError):
        await client.complete_text([{"role": "user", "content": "hi"}], model="m")
