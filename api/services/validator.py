import logging
import re
from typing import List, Tuple

from api.models import ClassificationResult, DATED_INTENTS, Intent

logger = logging.getLogger(__name__)

BANNED_EMOJIS = {'📅', '🗓️', '🗓', '📝', '📌', '📄'}
BANNED_HASHTAGS = {'#general', '#note', '#nota', '#image', '#imagen'}
DEFAULT_EMOJI = '💡'
DEFAULT_HASHTAG = '#idea'
BULLET = '•'
MIN_CHECKLIST_ITEMS = 3

# Ordered: first match wins
HASHTAG_KEYWORDS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r'birthday|party|celebrat|anniversary|wedding'), '#celebration'),
    (re.compile(r'dentist|teeth|tooth|doctor|hospital|clinic|health|medic|pharmacy|\bpills?\b'), '#health'),
    (re.compile(r'lunch|dinner|breakfast|restaurant|food|recipe|\bcook'), '#food'),
    (re.compile(r'groceries|grocery|supermarket|shopping|\bbuy\b'), '#shopping'),
    (re.compile(r'\bpay|\bbills?\b|\bbank\b|money|\brent\b|invoice|\btax'), '#finance'),
    (re.compile(r'movie|cinema|\bfilm|series|netflix|concert|music'), '#entertainment'),
    (re.compile(r'\bgym\b|workout|exercise|running|training|yoga|sport'), '#fitness'),
    (re.compile(r'meeting|\bwork\b|office|project|client|deadline'), '#work'),
    (re.compile(r'\btrip\b|travel|flight|vacation|holiday|airport'), '#travel'),
    (re.compile(r'study|\bclass\b|school|\bexams?\b|homework|university|course'), '#study'),
    (re.compile(r'\bpets?\b|\bdogs?\b|\bcats?\b|\bvet\b'), '#pets'),
    (re.compile(r'garden|\bplants?\b|flowers?'), '#garden'),
    (re.compile(r'\bmom\b|\bdad\b|mother|father|grandma|grandpa|family|\bkids?\b'), '#family'),
    (re.compile(r'\bclean|laundry|\bhouse\b|\bhome\b|repair'), '#home'),
]

# Ordered: first match wins
EMOJI_KEYWORDS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r'birthday|party|celebrat|anniversary|cumpleaños|fiesta'), '🎉'),
    (re.compile(r'dentist|teeth|tooth'), '🦷'),
    (re.compile(r'doctor|hospital|clinic|health|medic|appointment with dr|médico'), '🏥'),
    (re.compile(r'pharmacy|pill|medicine|prescription'), '💊'),
    (re.compile(r'lunch|dinner|breakfast|restaurant|food|\beat\b|\bcook|recipe'), '🍽️'),
    (re.compile(r'groceries|grocery|supermarket|shopping|\bmilk\b|\bbread\b|\beggs?\b'), '🛒'),
    (re.compile(r'\bpay|\bbills?\b|\bbank\b|money|\brent\b|invoice|\btax'), '💰'),
    (re.compile(r'movie|cinema|\bfilm|series|netflix'), '🎬'),
    (re.compile(r'\bgym\b|workout|exercise|\brun\b|running|training|yoga|sport'), '🏋️'),
    (re.compile(r'meeting|\bwork\b|office|project|client|deadline'), '💼'),
    (re.compile(r'\btrip\b|travel|flight|vacation|holiday|airport'), '✈️'),
    (re.compile(r'study|\bclass\b|school|\bexams?\b|homework|university|course'), '📚'),
    (re.compile(r'\bpets?\b|\bdogs?\b|\bcats?\b|\bvet\b|veterinar'), '🐾'),
    (re.compile(r'church|\bmass\b|temple'), '⛪'),
    (re.compile(r'coffee|\bbar\b|\bbeers?\b|drinks|\bwine\b'), '☕'),
    (re.compile(r'music|concert|\bband\b|\bgig\b'), '🎵'),
    (re.compile(r'haircut|hairdresser|barber|salon|beauty|nails'), '💇'),
    (re.compile(r'\bclean|laundry|\bhouse\b|\bhome\b|repair'), '🏠'),
    (re.compile(r'\bcall\b|\bphone\b'), '📞'),
]


def fallback_emoji(text: str) -> str:
    """Pick an emoji from content keywords; never returns a banned one."""
    lowered = (text or '').lower()
    for pattern, emoji in EMOJI_KEYWORDS:
        if pattern.search(lowered):
            return emoji
    return DEFAULT_EMOJI


def fallback_hashtag(text: str) -> str:
    """Topic tag from content keywords, used when the model gave no usable tag."""
    lowered = (text or '').lower()
    for pattern, tag in HASHTAG_KEYWORDS:
        if pattern.search(lowered):
            return tag
    return DEFAULT_HASHTAG


def count_bullets(content: str) -> int:
    return sum(1 for line in content.splitlines() if line.strip().startswith(BULLET))


def normalize_hashtags(hashtags: List[str]) -> List[str]:
    """Keep a single specific hashtag, lower-cased with a leading '#'."""
    for tag in hashtags:
        tag = tag.strip().lower().replace(' ', '')
        if not tag:
            continue
        if not tag.startswith('#'):
            tag = f'#{tag}'
        if tag not in BANNED_HASHTAGS and tag != '#':
            return [tag]
    return []


def validate(result: ClassificationResult, text: str = '') -> ClassificationResult:
    """
    Repair a classification so it satisfies the date/intent, emoji, hashtag and
    checklist invariants. Pure and idempotent: the input is not mutated and
    validating an already valid result returns an equal result.
    """
    intent = result.intent
    entities = result.entities
    reformatted = result.reformatted_content
    emoji = result.emoji

    if entities.date is None and intent == Intent.CALENDAR_EVENT:
        logger.warning("Correcting: calendar_event without a date -> simple_note")
        intent = Intent.SIMPLE_NOTE

    if entities.date is not None and intent not in DATED_INTENTS:
        logger.warning(f"Correcting: {intent.value} with a date -> calendar_event")
        intent = Intent.CALENDAR_EVENT

    if not emoji or emoji in BANNED_EMOJIS:
        emoji = fallback_emoji(text or f"{result.suggested_title} {result.summary}")

    if intent == Intent.CHECKLIST_NOTE and (not reformatted or count_bullets(reformatted) < MIN_CHECKLIST_ITEMS):
        logger.warning("Correcting: checklist without reformatted items -> simple_note")
        intent = Intent.SIMPLE_NOTE

    if intent != Intent.CHECKLIST_NOTE:
        reformatted = None

    hashtags = entities.hashtags
    if len(hashtags) > 1:
        hashtags = hashtags[:1]
    elif not hashtags:
        hashtags = [fallback_hashtag(text or f"{result.suggested_title} {result.summary}")]

    return result.model_copy(update={
        'intent': intent,
        'emoji': emoji,
        'reformatted_content': reformatted,
        'entities': entities.model_copy(update={'hashtags': list(hashtags)}),
    })
