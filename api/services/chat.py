import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from api.models import ConversationTurn, SessionContext
from lib.config import get_settings
from lib.error_handler import ErrorHandler, GenerationError, ProviderError
from lib.openai_client import OpenAIClient

logger = logging.getLogger(__name__)

MAX_REPLY_CHARS = 400
MAX_REPLY_TOKENS = 200
LEAK_MARKERS = ("```", "<think", "</think", "response:", "assistant:", "[debug")
NO_INFO_REPLY = "I don't have anything saved about that yet. You can tell me and I'll keep it as a note."

SENTENCE_END = re.compile(r'[.!?](?=\s|$)')


@dataclass
class PersonaConfig:
    name: str = "Memo"
    description: str = "a friendly, smart personal assistant that keeps the user's notes and calendar"
    language: str = "English"

    def preamble(self) -> str:
        return (
            f"You are {self.name}, {self.description}. "
            f"Answer in {self.language}, CONCISELY and DIRECTLY (2-3 sentences at most). "
            "Be friendly but brief and do not overuse emojis."
        )


def has_leak(reply: str) -> bool:
    lowered = reply.lower()
    return any(marker in lowered for marker in LEAK_MARKERS)


def clean_reply(reply: str, limit: int = MAX_REPLY_CHARS) -> str:
    """Strip provider artifacts and cut the reply at a sentence boundary within limit."""
    text = re.sub(r'<think>.*?</think>', '', reply, flags=re.DOTALL | re.IGNORECASE)
    text = re.sub(r'```.*?(```|$)', '', text, flags=re.DOTALL)
    text = re.sub(r'^\s*(response|assistant)\s*:\s*', '', text, flags=re.IGNORECASE)
    text = re.sub(r'\[debug[^\]]*\]', '', text, flags=re.IGNORECASE)
    text = re.sub(r'</?think>', '', text, flags=re.IGNORECASE)
    text = re.sub(r'\s+', ' ', text).strip()

    if len(text) <= limit:
        return text
    head = text[:limit]
    ends = [m.end() for m in SENTENCE_END.finditer(head)]
    if ends:
        return head[:ends[-1]].strip()
    return head.rsplit(' ', 1)[0].rstrip(',;:') + '...'


class ResponseGenerator:
    def __init__(
        self,
        openai_client: OpenAIClient,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        persona: Optional[PersonaConfig] = None
    ):
        settings = get_settings()
        self.openai_client = openai_client
        self.model = model or settings.openai_chat_model
        self.temperature = settings.chat_temperature if temperature is None else temperature
        self.persona = persona or PersonaConfig()

    def _build_system_prompt(self, context_block: str, persona: PersonaConfig) -> str:
        """Build the system prompt with the user's stored context"""
        prompt = persona.preamble()
        if context_block:
            prompt += (
                "\n\nIf the user asks about events, tasks or personal information, answer from this context."
                " If the answer is not there, say so clearly.\n\n"
                f"{context_block}"
            )
        else:
            prompt += (
                "\n\nThe user has no stored information relevant to this message."
                " If they ask about their events, notes or tasks, say plainly that nothing is saved."
            )
        return prompt

    def build_messages(
        self,
        message: str,
        context_block: str,
        recent_turns: List[ConversationTurn],
        persona: PersonaConfig,
        session_context: Optional[SessionContext] = None
    ) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": self._build_system_prompt(context_block, persona)}]
        if session_context and session_context.describe():
            messages.append({
                "role": "system",
                "content": f"What the user was just looking at:\n{session_context.describe()}"
            })
        if recent_turns:
            transcript = "\n".join(f"{turn.speaker}: {turn.text}" for turn in recent_turns)
            messages.append({"role": "system", "content": f"Recent conversation:\n{transcript}"})
        messages.append({"role": "user", "content": message})
        return messages

    async def _complete(self, messages: List[Dict[str, str]]) -> str:
        return await self.openai_client.complete_text(
            messages,
            model=self.model,
            temperature=self.temperature,
            max_tokens=MAX_REPLY_TOKENS
        )

    def _fallback(self, context_block: str, error: Exception, strict: bool) -> str:
        if strict:
            raise GenerationError(f"No usable reply: {str(error)}") from error
        if not context_block:
            logger.warning(f"Generation failed with empty context: {str(error)}")
            return NO_INFO_REPLY
        return ErrorHandler.handle_generation_error(error)

    async def generate(
        self,
        message: str,
        context_block: str,
        recent_turns: Optional[List[ConversationTurn]] = None,
        persona: Optional[PersonaConfig] = None,
        strict: bool = False,
        session_context: Optional[SessionContext] = None
    ) -> str:
        """
        Generate a short reply grounded on the context block.

        Always returns non-empty text unless strict is set, in which case a
        GenerationError is raised instead of the fallback.
        """
        messages = self.build_messages(
            message, context_block, recent_turns or [], persona or self.persona, session_context
        )

        try:
            reply = await self._complete(messages)
        except ProviderError as e:
            return self._fallback(context_block, e, strict)

        if reply and (len(reply) > MAX_REPLY_CHARS or has_leak(reply)):
            logger.warning(f"Regenerating reply ({len(reply)} chars, leak={has_leak(reply)})")
            retry = messages + [{
                "role": "system",
                "content": f"Reply again in plain text, under {MAX_REPLY_CHARS} characters, 2-3 sentences."
            }]
            try:
                reply = await self._complete(retry) or reply
            except ProviderError as e:
                logger.warning(f"Regeneration failed, cleaning the first reply: {str(e)}")

        reply = clean_reply(reply or "")
        if not reply:
            return self._fallback(context_block, GenerationError("Empty reply from provider"), strict)
        return reply
