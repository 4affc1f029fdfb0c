import logging
import re
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from api.models import ClassificationResult, Entities, Intent
from api.services.validator import (
    BULLET, MIN_CHECKLIST_ITEMS, fallback_emoji, fallback_hashtag, normalize_hashtags,
)
from lib.config import get_settings
from lib.date_parser import find_time, normalize_time, parse_iso_date, resolve_date
from lib.error_handler import ErrorHandler, ProviderError
from lib.openai_client import OpenAIClient

logger = logging.getLogger(__name__)

CLASSIFICATION_SYSTEM_PROMPT = """You classify short personal notes dictated to a voice assistant and extract structured data.

TODAY: {today} ({weekday}), current time: {time}, TOMORROW: {tomorrow}.
Resolve every relative date ("today", "tomorrow", "next Monday", "the 15th") against these anchors, never against any other year.

INTENT (critical):
- "calendar_event": a specific date or day is mentioned ("tomorrow 3pm", "on Monday", "the day after tomorrow")
- "reminder": something to remember with a date but no fixed appointment
- "checklist_note": a list of at least 3 separate items ("buy bread, milk, eggs")
- "simple_note": anything else, with no date

RULES:
1. EMOJI: the most specific one (birthday 🎉, dentist 🦷, doctor 🏥, food 🍽️, payment 💰, movie 🎬, gym 🏋️, work 💼, trip ✈️, study 📚, pet 🐾). Never 📅 🗓️ 📝 📌 📄.
2. SUMMARY: at most 8 words, paraphrased, different from the text.
3. TITLE: 3-6 words, without date or time.
4. HASHTAGS: exactly one specific topical hashtag. Never #general #note #image.
5. DATES: YYYY-MM-DD. A time without a day ("at 5pm") means {today}.
6. TIME: 24h HH:MM. "3pm" -> "15:00", "10am" -> "10:00", "noon" -> "12:00", "midnight" -> "00:00".
7. CHECKLIST: only with 3 or more items; reformattedContent has one line per item, "• Item emoji".

Reply ONLY with JSON:
{{
  "intent": "calendar_event|reminder|simple_note|checklist_note",
  "entities": {{
    "date": "YYYY-MM-DD or null",
    "time": "HH:MM or null",
    "location": "string or null",
    "participants": ["names"],
    "hashtags": ["#topic"]
  }},
  "confidence": 0.0-1.0,
  "suggestedTitle": "short title",
  "emoji": "specific emoji",
  "summary": "short summary",
  "reformattedContent": "bulleted list or null"
}}"""

LIST_PREFIX = re.compile(r'^.*?\b(?:list|items)\s*:\s*', re.IGNORECASE)
LEADING_VERB = re.compile(
    r'^\s*(?:i\s+)?(?:need\s+to\s+|have\s+to\s+|must\s+|remember\s+to\s+|don\'?t\s+forget\s+to\s+|to\s+)?'
    r'(?:buy|get|pick\s+up|grab|purchase|bring|pack|order)\s+',
    re.IGNORECASE
)
ITEM_SEPARATORS = re.compile(r'\s*(?:,|;|\n|\band\b|&)\s*', re.IGNORECASE)
MAX_ITEM_WORDS = 5

ITEM_EMOJIS = {
    'bread': '🍞', 'milk': '🥛', 'eggs': '🥚', 'egg': '🥚', 'tuna': '🐟', 'fish': '🐟',
    'cheese': '🧀', 'apples': '🍎', 'apple': '🍎', 'bananas': '🍌', 'banana': '🍌',
    'coffee': '☕', 'tea': '🍵', 'rice': '🍚', 'chicken': '🍗', 'meat': '🥩',
    'tomatoes': '🍅', 'tomato': '🍅', 'potatoes': '🥔', 'water': '💧', 'wine': '🍷',
    'beer': '🍺', 'butter': '🧈', 'pasta': '🍝', 'carrots': '🥕', 'onions': '🧅',
    'soap': '🧼', 'shampoo': '🧴', 'toilet paper': '🧻', 'batteries': '🔋',
}


def split_checklist_items(text: str) -> List[str]:
    """Split a dictated list into distinct items; [] when it does not look like a list."""
    body = LIST_PREFIX.sub('', text.strip(), count=1)
    body = LEADING_VERB.sub('', body, count=1)

    items = []
    seen = set()
    for raw in ITEM_SEPARATORS.split(body):
        item = raw.strip().strip('.!?').strip()
        if not item:
            continue
        if len(item.split()) > MAX_ITEM_WORDS:
            return []
        key = item.lower()
        if key in seen:
            continue
        seen.add(key)
        items.append(item[0].upper() + item[1:])
    return items


def has_list_marker(text: str) -> bool:
    return bool(LIST_PREFIX.search(text) or LEADING_VERB.match(text))


def render_checklist(items: List[str]) -> str:
    lines = []
    for item in items:
        emoji = ITEM_EMOJIS.get(item.lower())
        lines.append(f"{BULLET} {item} {emoji}" if emoji else f"{BULLET} {item}")
    return "\n".join(lines)


def default_classification(text: str) -> ClassificationResult:
    """Safe result used whenever the provider cannot classify the text."""
    return ClassificationResult(
        intent=Intent.SIMPLE_NOTE,
        entities=Entities(hashtags=[fallback_hashtag(text)]),
        confidence=0.5,
        suggested_title=text[:30],
        emoji=fallback_emoji(text),
        summary=text[:50],
    )


class EntityExtractor:
    def __init__(self, openai_client: OpenAIClient, model: Optional[str] = None, temperature: Optional[float] = None):
        settings = get_settings()
        self.openai_client = openai_client
        self.model = model or settings.openai_classify_model
        self.temperature = settings.classify_temperature if temperature is None else temperature

    def _build_system_prompt(self, now: datetime) -> str:
        return CLASSIFICATION_SYSTEM_PROMPT.format(
            today=now.date().isoformat(),
            weekday=now.strftime('%A'),
            time=now.strftime('%H:%M'),
            tomorrow=(now.date() + timedelta(days=1)).isoformat()
        )

    async def classify(self, text: str, now: datetime) -> ClassificationResult:
        """Classify text into intent and entities; never raises."""
        logger.info(f"Classifying note: {text[:80]}")
        try:
            data = await self.openai_client.complete_json(
                prompt=f'Text to classify: "{text}"',
                model=self.model,
                system=self._build_system_prompt(now),
                temperature=self.temperature
            )
            result = ClassificationResult.model_validate(data)
            result = self._reconcile(result, text, now)
        except (ProviderError, PydanticValidationError) as e:
            ErrorHandler.handle_classification_error(e)
            return default_classification(text)
        except Exception as e:
            logger.error(f"Unexpected classification failure: {str(e)}", exc_info=True)
            return default_classification(text)

        logger.info(f"Classification: intent={result.intent.value} date={result.entities.date} time={result.entities.time}")
        return result

    def _reconcile(self, result: ClassificationResult, text: str, now: datetime) -> ClassificationResult:
        """Re-derive the deterministic fields instead of trusting the model."""
        entities = result.entities
        today = now.date()

        date = resolve_date(text, now)
        if date is None:
            model_date = parse_iso_date(entities.date)
            # Past dates from the model are anchored on the wrong year
            date = model_date.isoformat() if model_date and model_date >= today else None

        time = find_time(text)
        if time is not None and date is None:
            date = today.isoformat()
        if time is None:
            time = normalize_time(entities.time)

        participants = list(dict.fromkeys(entities.participants))
        hashtags = normalize_hashtags(entities.hashtags) or [fallback_hashtag(text)]

        intent = result.intent
        reformatted = None
        items = split_checklist_items(text)
        looks_like_list = has_list_marker(text) or intent == Intent.CHECKLIST_NOTE
        if date is None and looks_like_list and len(items) >= MIN_CHECKLIST_ITEMS:
            intent = Intent.CHECKLIST_NOTE
            reformatted = render_checklist(items)
        elif intent == Intent.CHECKLIST_NOTE:
            intent = Intent.SIMPLE_NOTE

        return result.model_copy(update={
            'intent': intent,
            'entities': entities.model_copy(update={
                'date': date,
                'time': time,
                'participants': participants,
                'hashtags': hashtags,
            }),
            'suggested_title': result.suggested_title or text[:30],
            'summary': result.summary or text[:50],
            'reformatted_content': reformatted,
        })
