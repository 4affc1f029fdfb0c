"""
Typed shapes shared by the assistant pipeline.

Provider JSON is parsed into ClassificationResult before anything downstream
touches it. Rows coming back from Supabase stay plain dicts.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Intent(str, Enum):
    CALENDAR_EVENT = "calendar_event"
    REMINDER = "reminder"
    SIMPLE_NOTE = "simple_note"
    CHECKLIST_NOTE = "checklist_note"


DATED_INTENTS = (Intent.CALENDAR_EVENT, Intent.REMINDER)

INTENT_ALIASES = {
    "checklist": Intent.CHECKLIST_NOTE,
    "social_event": Intent.CALENDAR_EVENT,
    "event": Intent.CALENDAR_EVENT,
    "note": Intent.SIMPLE_NOTE,
    "simple": Intent.SIMPLE_NOTE,
}


class Entities(BaseModel):
    date: Optional[str] = None
    time: Optional[str] = None
    location: Optional[str] = None
    participants: List[str] = []
    hashtags: List[str] = []

    @field_validator("date", "time", "location", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if value is None:
            return None
        value = str(value).strip()
        if not value or value.lower() in ("null", "none", "n/a"):
            return None
        return value

    @field_validator("participants", "hashtags", mode="before")
    @classmethod
    def coerce_list(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [str(item).strip() for item in value if item is not None and str(item).strip()]


class ClassificationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    intent: Intent = Intent.SIMPLE_NOTE
    entities: Entities = Field(default_factory=Entities)
    confidence: float = 0.5
    suggested_title: str = Field("", alias="suggestedTitle")
    emoji: str = ""
    summary: str = ""
    reformatted_content: Optional[str] = Field(None, alias="reformattedContent")

    @field_validator("intent", mode="before")
    @classmethod
    def coerce_intent(cls, value):
        if isinstance(value, Intent):
            return value
        key = str(value or "").strip().lower()
        if key in INTENT_ALIASES:
            return INTENT_ALIASES[key]
        try:
            return Intent(key)
        except ValueError:
            return Intent.SIMPLE_NOTE

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, value):
        try:
            confidence = float(value)
        except (TypeError, ValueError):
            return 0.5
        return min(max(confidence, 0.0), 1.0)

    @field_validator("entities", mode="before")
    @classmethod
    def default_entities(cls, value):
        return value or {}

    @field_validator("suggested_title", "emoji", "summary", mode="before")
    @classmethod
    def coerce_text(cls, value):
        return "" if value is None else str(value).strip()

    @field_validator("reformatted_content", mode="before")
    @classmethod
    def blank_content(cls, value):
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ConversationTurn(BaseModel):
    role: str = Field("user", validation_alias=AliasChoices("role", "type", "sender"))
    text: str = ""
    timestamp: Optional[datetime] = None

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value):
        return "user" if str(value or "user").lower() in ("user", "me", "human") else "assistant"

    @field_validator("text", mode="before")
    @classmethod
    def coerce_text(cls, value):
        return "" if value is None else str(value)

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, value):
        if value in (None, ""):
            return None
        if isinstance(value, (int, float)):
            # Browser clients send epoch milliseconds
            try:
                return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
            except (OverflowError, OSError, ValueError) as e:
                raise ValueError(f"timestamp out of range: {value}") from e
        return value

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, value):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def speaker(self) -> str:
        return "Me" if self.role == "user" else "AI"


class NoteCreate(BaseModel):
    user_id: str
    content: str
    note_type: str
    hashtags: List[str] = []
    ai_classification: Dict[str, Any] = {}
    image_data: Optional[str] = None


class EventCreate(BaseModel):
    user_id: str
    title: str
    description: Optional[str] = None
    start_datetime: str
    location: Optional[str] = None
    color: str = "blue"
    is_social: bool = False


@dataclass
class NotePatch:
    """Named optional fields of a note update; None means "leave untouched"."""

    content: Optional[str] = None
    is_favorite: Optional[bool] = None
    is_archived: Optional[bool] = None
    hashtags: Optional[List[str]] = None
    checklist_data: Optional[Any] = None

    @classmethod
    def from_request(cls, body: Dict[str, Any]) -> "NotePatch":
        return cls(
            content=body.get("content"),
            is_favorite=body.get("isFavorite"),
            is_archived=body.get("isArchived"),
            hashtags=body.get("hashtags"),
            checklist_data=body.get("checklistData"),
        )

    def is_empty(self) -> bool:
        return not self.to_row()

    def to_row(self) -> Dict[str, Any]:
        row = {
            "content": self.content,
            "is_favorite": self.is_favorite,
            "is_archived": self.is_archived,
            "hashtags": self.hashtags,
            "checklist_data": self.checklist_data,
        }
        return {key: value for key, value in row.items() if value is not None}


@dataclass
class SessionContext:
    """What the client was looking at before this turn, used to resolve "that"."""

    last_note: Optional[str] = None
    last_search: Optional[str] = None
    last_video: Optional[str] = None
    summary: Optional[str] = None

    @classmethod
    def from_request(cls, value: Any) -> Optional["SessionContext"]:
        if not value:
            return None
        if isinstance(value, str):
            return cls(summary=value)
        return cls(
            last_note=value.get("lastNote"),
            last_search=value.get("lastSearch"),
            last_video=value.get("lastVideo"),
            summary=value.get("summary"),
        )

    def describe(self) -> str:
        parts = []
        if self.summary:
            parts.append(self.summary)
        if self.last_note:
            parts.append(f"Last viewed note: {self.last_note}")
        if self.last_search:
            parts.append(f"Last search: {self.last_search}")
        if self.last_video:
            parts.append(f"Last video: {self.last_video}")
        return "\n".join(parts)


@dataclass
class RoutedAction:
    type: str
    response: str

    def to_response(self) -> Dict[str, Any]:
        return {"type": self.type, "response": self.response}


@dataclass
class SaveConversation(RoutedAction):
    note: Dict[str, Any] = field(default_factory=dict)

    def to_response(self) -> Dict[str, Any]:
        return {**super().to_response(), "note": self.note}


@dataclass
class Converse(RoutedAction):
    should_offer_save: bool = False
    audio_data: Optional[str] = None
    audio_mime_type: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        body = {
            **super().to_response(),
            "shouldOfferSave": self.should_offer_save,
            "hasNativeAudio": self.audio_data is not None,
        }
        if self.audio_data is not None:
            body["audioData"] = self.audio_data
            body["audioMimeType"] = self.audio_mime_type
        return body


@dataclass
class CreateNote(RoutedAction):
    note: Dict[str, Any] = field(default_factory=dict)
    classification: Optional[ClassificationResult] = None

    def to_response(self) -> Dict[str, Any]:
        return {
            **super().to_response(),
            "note": self.note,
            "classification": self.classification.to_dict() if self.classification else None,
        }


@dataclass
class CreateEvent(CreateNote):
    event: Dict[str, Any] = field(default_factory=dict)

    def to_response(self) -> Dict[str, Any]:
        return {**super().to_response(), "event": self.event}
