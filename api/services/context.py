import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from lib.config import get_settings

logger = logging.getLogger(__name__)

NOTE_PREVIEW_LENGTH = 100

STOPWORDS = {
    'about', 'after', 'again', 'also', 'any', 'are', 'been', 'before', 'being', 'can', 'could',
    'did', 'does', 'doing', 'done', 'down', 'each', 'even', 'from', 'have', 'having', 'here',
    'into', 'just', 'know', 'like', 'more', 'most', 'much', 'need', 'other', 'over', 'please',
    'remember', 'should', 'show', 'some', 'such', 'tell', 'than', 'that', 'their', 'them',
    'then', 'there', 'these', 'they', 'thing', 'things', 'this', 'those', 'very', 'want',
    'were', 'what', 'when', 'where', 'which', 'while', 'will', 'with', 'would', 'your',
    'yours', 'today', 'tomorrow', 'anything', 'something', 'everything', 'my', 'mine',
}

TOKEN = re.compile(r"[a-z0-9áéíóúñü']+")


def extract_keywords(text: Optional[str]) -> List[str]:
    """Lower-cased, stopword-filtered tokens longer than 3 characters, in order."""
    if not text:
        return []
    tokens = [token.strip("'") for token in TOKEN.findall(text.lower())]
    return list(dict.fromkeys(t for t in tokens if len(t) > 3 and t not in STOPWORDS))


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None


def format_event_date(start: datetime) -> str:
    """'Tuesday, September 30, 2025 at 3:00 PM'; midnight starts are shown as all-day."""
    label = f"{start:%A, %B} {start.day}, {start.year}"
    if start.hour == 0 and start.minute == 0:
        return label
    hour = start.hour % 12 or 12
    suffix = 'AM' if start.hour < 12 else 'PM'
    return f"{label} at {hour}:{start.minute:02d} {suffix}"


class ContextAssembler:
    """
    Builds the personal context block injected into conversational prompts.

    Upcoming events and recent notes for one user, with privacy-tagged notes
    excluded and both sections capped by count and by a character budget.
    """

    def __init__(
        self,
        storage,
        max_events: Optional[int] = None,
        max_notes: Optional[int] = None,
        window_days: Optional[int] = None,
        char_budget: Optional[int] = None,
        privacy_hashtag: Optional[str] = None
    ):
        settings = get_settings()
        self.storage = storage
        self.max_events = max_events or settings.context_max_events
        self.max_notes = max_notes or settings.context_max_notes
        self.window_days = window_days or settings.context_window_days
        self.char_budget = char_budget or settings.context_char_budget
        self.privacy_hashtag = (privacy_hashtag or settings.privacy_hashtag).lower()

    async def build_context(self, user_id: str, now: datetime, query_text: Optional[str] = None) -> str:
        events = await self.storage.list_upcoming_events(
            user_id,
            start=now,
            end=now + timedelta(days=self.window_days),
            limit=self.max_events
        )
        notes = await self.storage.list_recent_notes(
            user_id,
            limit=self.max_notes,
            exclude_hashtag=self.privacy_hashtag
        )

        notes = [note for note in notes if not self._is_private(note)][:self.max_notes]
        if query_text is not None:
            notes = self._filter_by_keywords(notes, extract_keywords(query_text))

        events = sorted(events, key=lambda e: str(e.get('start_datetime') or ''))[:self.max_events]
        logger.info(f"Context for {user_id}: {len(events)} events, {len(notes)} notes")
        return self._render_within_budget(events, notes)

    def _is_private(self, note: Dict[str, Any]) -> bool:
        return any(str(tag).lower() == self.privacy_hashtag for tag in note.get('hashtags') or [])

    def _filter_by_keywords(self, notes: List[Dict[str, Any]], keywords: List[str]) -> List[Dict[str, Any]]:
        if not keywords:
            return []
        return [
            note for note in notes
            if any(keyword in (note.get('content') or '').lower() for keyword in keywords)
        ]

    def _render_event(self, event: Dict[str, Any]) -> str:
        line = f"- {event.get('title', '').strip()}"
        start = _parse_datetime(event.get('start_datetime'))
        if start:
            line += f" ({format_event_date(start)})"
        if event.get('location'):
            line += f" at {event['location']}"
        return line

    def _render_note(self, note: Dict[str, Any]) -> str:
        content = (note.get('content') or '').strip().replace('\n', ' ')
        preview = content[:NOTE_PREVIEW_LENGTH]
        if len(content) > NOTE_PREVIEW_LENGTH:
            preview += '...'
        return f"- {preview}"

    def render(self, events: List[Dict[str, Any]], notes: List[Dict[str, Any]]) -> str:
        sections = []
        if events:
            sections.append("UPCOMING EVENTS:\n" + "\n".join(self._render_event(e) for e in events))
        if notes:
            sections.append("NOTES:\n" + "\n".join(self._render_note(n) for n in notes))
        return "\n\n".join(sections)

    def _render_within_budget(self, events: List[Dict[str, Any]], notes: List[Dict[str, Any]]) -> str:
        # Drop the oldest note first, then the farthest event
        events, notes = list(events), list(notes)
        block = self.render(events, notes)
        while len(block) > self.char_budget and (events or notes):
            if notes:
                notes.pop()
            else:
                events.pop()
            block = self.render(events, notes)
        return block
