import logging
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Union
from zoneinfo import ZoneInfo

from api.models import (
    ClassificationResult, Converse, ConversationTurn, CreateEvent, CreateNote, DATED_INTENTS,
    EventCreate, NoteCreate, RoutedAction, SaveConversation, SessionContext,
)
from api.services.chat import ResponseGenerator
from api.services.context import ContextAssembler
from api.services.extractor import EntityExtractor
from api.services.speech import SpeechSessionManager
from api.services.storage import StorageService
from api.services.validator import validate
from lib.config import get_settings
from lib.date_parser import build_start_datetime
from lib.error_handler import ErrorHandler, ProviderError
from lib.openai_client import OpenAIClient

logger = logging.getLogger(__name__)

SAVE_PATTERN = re.compile(
    r'\b(?:save|keep|store)\s+(?:(?:this|the|our|that)\s+)?(?:(?:whole|entire)\s+)?(?:conversation|chat)\b'
    r'|\b(?:save|keep|store)\s+(?:everything|all)\s+(?:that\s+)?we\s+(?:talked|discussed|said)',
    re.IGNORECASE
)
SAVE_MENTION = re.compile(r'\b(?:save|conversation)\b', re.IGNORECASE)

RECENT_WINDOW = timedelta(minutes=5)
MAX_RECENT_TURNS = 30
OFFER_SAVE_MIN_TURNS = 8

CONVERSATION_SAVED = "Done, conversation saved as a note"
NOTE_SAVED = "Note saved"
EVENT_CREATED = "Event created: {title}"

INTENT_DETECTION_PROMPT = """Decide whether this message is:
- "question": the user asks something, wants information or is just chatting (examples: "hi", "what events do I have", "who was Einstein", "how are you", "on that date", "and what else")
- "action": the user wants to create a note, task, event or reminder (examples: "remember to buy bread", "tomorrow I have the dentist", "write down pay the phone bill", "event on Saturday", "buy milk")
{session}
Message: "{message}"

Reply ONLY with the word: question or action"""


def filter_recent_turns(history: List[ConversationTurn], now: datetime) -> List[ConversationTurn]:
    """Turns from the last five minutes, at most the last thirty."""
    reference = now if now.tzinfo else now.replace(tzinfo=timezone.utc)
    cutoff = reference - RECENT_WINDOW
    recent = [turn for turn in history if turn.timestamp is None or turn.timestamp > cutoff]
    return recent[-MAX_RECENT_TURNS:]


def should_offer_save(recent_turns: List[ConversationTurn]) -> bool:
    if len(recent_turns) < OFFER_SAVE_MIN_TURNS:
        return False
    return not any(SAVE_MENTION.search(turn.text) for turn in recent_turns[-3:])


def format_conversation(turns: List[ConversationTurn], now: datetime) -> str:
    title = f"Conversation with AI - {now.month}/{now.day}/{now.year}"
    lines = [f"{turn.speaker}: {turn.text}" for turn in turns if turn.text.strip()]
    return "\n\n".join([title] + lines)


class IntentRouter:
    """
    Single entry point for a user utterance.

    Decides between saving the conversation, answering a question from the
    user's stored context, or capturing the message as a note or event.
    """

    def __init__(
        self,
        openai_client: OpenAIClient,
        extractor: EntityExtractor,
        storage: StorageService,
        context_assembler: ContextAssembler,
        generator: ResponseGenerator,
        speech_manager: Optional[SpeechSessionManager] = None,
        model: Optional[str] = None
    ):
        settings = get_settings()
        self.openai_client = openai_client
        self.extractor = extractor
        self.storage = storage
        self.context_assembler = context_assembler
        self.generator = generator
        self.speech_manager = speech_manager
        self.model = model or settings.openai_classify_model
        self.timezone = ZoneInfo(settings.timezone)

    def now(self) -> datetime:
        return datetime.now(self.timezone)

    async def route(
        self,
        message: str,
        history: List[ConversationTurn],
        user_id: str,
        session_context: Optional[SessionContext] = None,
        use_native_voice: bool = False,
        now: Optional[datetime] = None
    ) -> RoutedAction:
        now = now or self.now()
        recent = filter_recent_turns(history, now)
        logger.info(f"Routing message ({len(history)} turns, {len(recent)} recent): {message[:80]}")

        if SAVE_PATTERN.search(message) and recent:
            note = await self.save_conversation(recent, user_id, now)
            return SaveConversation(type="conversation_saved", response=CONVERSATION_SAVED, note=note)

        intent = await self.detect_intent(message, session_context)
        logger.info(f"Detected intent: {intent}")

        if intent == "action":
            return await self.capture(message, user_id, now)
        return await self.answer(message, recent, user_id, now, use_native_voice, session_context)

    async def detect_intent(self, message: str, session_context: Optional[SessionContext] = None) -> str:
        """Return "question" or "action"; provider failures count as a question."""
        session = ""
        if session_context and session_context.describe():
            session = f"\nWhat the user was just looking at:\n{session_context.describe()}\n"
        try:
            reply = await self.openai_client.complete_text(
                [{"role": "user", "content": INTENT_DETECTION_PROMPT.format(session=session, message=message)}],
                model=self.model,
                temperature=0.3,
                max_tokens=5
            )
        except ProviderError as e:
            logger.error(f"Intent detection failed: {str(e)}")
            return "question"
        return "action" if "action" in reply.lower() else "question"

    async def capture(
        self,
        text: str,
        user_id: str,
        now: datetime,
        image_data: Optional[str] = None
    ) -> Union[CreateNote, CreateEvent]:
        """Classify text and persist it as a note, plus a linked event when it is dated."""
        result = validate(await self.extractor.classify(text, now), text)
        note = self._note_for(result, text, user_id, image_data)

        if result.intent in DATED_INTENTS and result.entities.date:
            event = EventCreate(
                user_id=user_id,
                title=f"{result.emoji} {result.suggested_title}".strip(),
                description=result.summary or None,
                start_datetime=build_start_datetime(result.entities.date, result.entities.time),
                location=result.entities.location,
            )
            created = await self.storage.create_note_with_event(note, event)
            logger.info(f"Created event {created['event'].get('id')} for note {created['note'].get('id')}")
            return CreateEvent(
                type="event_created",
                response=EVENT_CREATED.format(title=event.title),
                note=created['note'],
                classification=result,
                event=created['event'],
            )

        created_note = await self.storage.create_note(note)
        logger.info(f"Created {result.intent.value} note {created_note.get('id')}")
        return CreateNote(type="note_created", response=NOTE_SAVED, note=created_note, classification=result)

    @staticmethod
    def _note_for(
        result: ClassificationResult,
        text: str,
        user_id: str,
        image_data: Optional[str] = None
    ) -> NoteCreate:
        return NoteCreate(
            user_id=user_id,
            content=result.reformatted_content or text,
            note_type=result.intent.value,
            hashtags=result.entities.hashtags,
            ai_classification=result.to_dict(),
            image_data=image_data,
        )

    async def answer(
        self,
        message: str,
        recent: List[ConversationTurn],
        user_id: str,
        now: datetime,
        use_native_voice: bool = False,
        session_context: Optional[SessionContext] = None
    ) -> Converse:
        context_block = await self.context_assembler.build_context(user_id, now, query_text=message)
        offer_save = should_offer_save(recent)

        if use_native_voice and self.speech_manager is not None:
            messages = self.generator.build_messages(
                message, context_block, recent, self.generator.persona, session_context
            )
            prompt = "\n\n".join(m["content"] for m in messages)
            try:
                turn = await self.speech_manager.speak(prompt)
                return Converse(
                    type="conversation",
                    response=turn.text,
                    should_offer_save=offer_save,
                    audio_data=turn.audio_data,
                    audio_mime_type=turn.mime_type,
                )
            except ProviderError as e:
                ErrorHandler.handle_speech_error(e)

        reply = await self.generator.generate(message, context_block, recent, session_context=session_context)
        return Converse(type="conversation", response=reply, should_offer_save=offer_save)

    async def save_conversation(self, turns: List[ConversationTurn], user_id: str, now: datetime) -> dict:
        content = format_conversation(turns, now)
        note = await self.storage.save_conversation_note(user_id, content)
        logger.info(f"Saved conversation of {len(turns)} turns as note {note.get('id')}")
        return note
