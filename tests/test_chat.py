import pytest

from api.models import ConversationTurn, SessionContext
from api.services.chat import (
    MAX_REPLY_CHARS, NO_INFO_REPLY, PersonaConfig, ResponseGenerator, clean_reply, has_leak,
)
from lib.error_handler import GenerationError, ProviderError

CONTEXT = "UPCOMING EVENTS:\n- 🦷 Dentist (Tuesday, September 30, 2025 at 3:00 PM)"


@pytest.fixture
def generator(mock_openai_client):
    return ResponseGenerator(mock_openai_client, model="test-model", temperature=0.8)


@pytest.mark.asyncio
async def test_returns_provider_reply(generator, mock_openai_client):
    mock_openai_client.complete_text.return_value = "You have the dentist tomorrow at 3 PM."

    reply = await generator.generate("what do I have tomorrow?", CONTEXT, [])

    assert reply == "You have the dentist tomorrow at 3 PM."
    messages = mock_openai_client.complete_text.call_args.args[0]
    assert "Dentist" in messages[0]["content"]
    assert messages[-1] == {"role": "user", "content": "what do I have tomorrow?"}


@pytest.mark.asyncio
async def test_transcript_included(generator, mock_openai_client):
    mock_openai_client.complete_text.return_value = "Sure."
    turns = [ConversationTurn(role="user", text="hi"), ConversationTurn(role="assistant", text="hello!")]

    await generator.generate("and tomorrow?", CONTEXT, turns)

    messages = mock_openai_client.complete_text.call_args.args[0]
    assert "Me: hi\nAI: hello!" in messages[1]["content"]


@pytest.mark.asyncio
async def test_empty_context_and_empty_reply_still_answers(generator, mock_openai_client):
    mock_openai_client.complete_text.return_value = ""

    reply = await generator.generate("what do I have today?", "", [])

    assert reply == NO_INFO_REPLY
    system = mock_openai_client.complete_text.call_args.args[0][0]["content"]
    assert "no stored information" in system


@pytest.mark.asyncio
async def test_provider_error_falls_back(generator, mock_openai_client):
    mock_openai_client.complete_text.side_effect = ProviderError("timeout")

    assert await generator.generate("hi", "", []) == NO_INFO_REPLY
    assert await generator.generate("hi", CONTEXT, []) == "Sorry, I had trouble with that. Could you rephrase it?"


@pytest.mark.asyncio
async def test_strict_raises_generation_error(generator, mock_openai_client):
    mock_openai_client.complete_text.side_effect = ProviderError("timeout")

    with pytest.raises(GenerationError):
        await generator.generate("hi", CONTEXT, [], strict=True)


@pytest.mark.asyncio
async def test_long_reply_is_regenerated(generator, mock_openai_client):
    mock_openai_client.complete_text.side_effect = ["word " * 120, "Short answer."]

    reply = await generator.generate("tell me everything", CONTEXT, [])

    assert reply == "Short answer."
    assert mock_openai_client.complete_text.await_count == 2


@pytest.mark.asyncio
async def test_leaky_reply_is_cleaned_after_retry(generator, mock_openai_client):
    mock_openai_client.complete_text.side_effect = [
        "<think>check context</think>Your dentist is tomorrow.",
        "Response: Your dentist is tomorrow at 3.",
    ]

    reply = await generator.generate("when is the dentist?", CONTEXT, [])

    assert reply == "Your dentist is tomorrow at 3."


@pytest.mark.asyncio
async def test_failed_retry_keeps_first_reply(generator, mock_openai_client):
    mock_openai_client.complete_text.side_effect = ["This is a sentence. " * 40, ProviderError("down")]

    reply = await generator.generate("talk", CONTEXT, [])

    assert len(reply) <= MAX_REPLY_CHARS
    assert reply.endswith(".")


@pytest.mark.asyncio
async def test_persona_override(generator, mock_openai_client):
    mock_openai_client.complete_text.return_value = "Hi!"

    await generator.generate("hi", "", [], persona=PersonaConfig(name="Nova"))

    assert "You are Nova" in mock_openai_client.complete_text.call_args.args[0][0]["content"]


def test_clean_reply_truncates_at_sentence():
    text = "First sentence here. " + "a" * 500
    assert clean_reply(text) == "First sentence here."


def test_has_leak():
    assert has_leak("```json {}```")
    assert has_leak("Assistant: hello")
    assert not has_leak("You have two events this week.")


@pytest.mark.asyncio
async def test_session_section_precedes_transcript(generator, mock_openai_client):
    mock_openai_client.complete_text.return_value = "It uses tomatoes."
    turns = [ConversationTurn(role="user", text="I watched a cooking video")]

    await generator.generate(
        "what does it need?", CONTEXT, turns, session_context=SessionContext(last_video="Pasta pomodoro recipe")
    )

    messages = mock_openai_client.complete_text.call_args.args[0]
    assert messages[1]["content"] == "What the user was just looking at:\nLast video: Pasta pomodoro recipe"
    assert messages[2]["content"].startswith("Recent conversation:")


def test_empty_session_adds_no_section(generator):
    messages = generator.build_messages("hi", "", [], generator.persona, SessionContext())
    assert [m["role"] for m in messages] == ["system", "user"]
