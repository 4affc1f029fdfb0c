import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from api.models import EventCreate, NoteCreate, NotePatch
from lib.crypto import VaultCipher
from lib.database import Database
from lib.error_handler import NotFoundError, PersistenceError, ValidationError

logger = logging.getLogger(__name__)

CONVERSATION_HASHTAGS = ['#conversation', '#ai']
NOTES_PAGE_SIZE = 50
NOTIFICATIONS_PAGE_SIZE = 50

VAULT_COLUMNS = 'id, user_id, title, username, email, url, notes, category, icon, is_favorite, created_at, updated_at'
VAULT_FIELDS = ('title', 'username', 'email', 'url', 'notes', 'category', 'icon', 'is_favorite')


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _local_timestamp(value: datetime) -> str:
    # Event starts are stored as local wall-clock time without an offset
    return value.replace(tzinfo=None).isoformat(timespec='seconds')


class StorageService:
    def __init__(self, database: Database, cipher: Optional[VaultCipher] = None):
        self.db = database
        self.cipher = cipher
        self.notes_table = 'notes'
        self.events_table = 'calendar_events'
        self.notifications_table = 'notifications'
        self.vault_table = 'password_vault'
        logger.info(f"Storage service initialized with vault cipher: {bool(cipher)}")

    # Notes

    async def create_note(self, note: NoteCreate) -> Dict[str, Any]:
        logger.info(f"Storing {note.note_type} note for {note.user_id}")
        rows = await self.db.execute(
            self.db.table(self.notes_table).insert(note.model_dump(exclude_none=True)),
            'create note'
        )
        if not rows:
            raise PersistenceError("create note returned no row")
        return rows[0]

    async def create_note_with_event(self, note: NoteCreate, event: EventCreate) -> Dict[str, Any]:
        """
        Insert a note and its linked calendar event in one transaction.

        Both rows are written by the create_note_with_event Postgres function,
        so a failing event insert leaves no orphan note behind.

        Returns:
            {"note": {...}, "event": {...}}
        """
        logger.info(f"Storing note with event '{event.title}' at {event.start_datetime}")
        rows = await self.db.rpc(
            'create_note_with_event',
            {
                'p_note': note.model_dump(exclude_none=True),
                'p_event': event.model_dump(exclude_none=True),
            },
            'create note with event'
        )
        if not rows or not rows[0].get('note') or not rows[0].get('event'):
            raise PersistenceError("create note with event returned no rows")
        return rows[0]

    async def list_notes(self, user_id: str, limit: int = NOTES_PAGE_SIZE) -> List[Dict[str, Any]]:
        """Notes that did not produce a calendar event, newest first."""
        rows = await self.db.execute(
            self.db.table(self.notes_table)
            .select('*, calendar_events(id)')
            .eq('user_id', user_id)
            .order('created_at', desc=True)
            .limit(limit),
            'list notes'
        )
        notes = []
        for row in rows:
            if row.pop('calendar_events', None):
                continue
            notes.append(row)
        return notes

    async def list_recent_notes(
        self,
        user_id: str,
        limit: int,
        exclude_hashtag: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        query = (
            self.db.table(self.notes_table)
            .select('id, content, hashtags, note_type, created_at')
            .eq('user_id', user_id)
        )
        if exclude_hashtag:
            query = query.not_.contains('hashtags', [exclude_hashtag])
        return await self.db.execute(
            query.order('created_at', desc=True).limit(limit),
            'list recent notes'
        )

    async def update_note(self, note_id: str, user_id: str, patch: NotePatch) -> Dict[str, Any]:
        if patch.is_empty():
            raise ValidationError("No fields to update")
        row = patch.to_row()
        row['updated_at'] = _utcnow()
        rows = await self.db.execute(
            self.db.table(self.notes_table).update(row).eq('id', note_id).eq('user_id', user_id),
            'update note'
        )
        if not rows:
            raise NotFoundError("Note")
        return rows[0]

    async def delete_note(self, note_id: str, user_id: str) -> None:
        """Delete a note together with any calendar event created from it."""
        await self.db.execute(
            self.db.table(self.events_table).delete().eq('note_id', note_id).eq('user_id', user_id),
            'delete note events'
        )
        rows = await self.db.execute(
            self.db.table(self.notes_table).delete().eq('id', note_id).eq('user_id', user_id),
            'delete note'
        )
        if not rows:
            raise NotFoundError("Note")

    async def save_conversation_note(self, user_id: str, content: str) -> Dict[str, Any]:
        return await self.create_note(NoteCreate(
            user_id=user_id,
            content=content,
            note_type='simple_note',
            hashtags=list(CONVERSATION_HASHTAGS),
            ai_classification={'type': 'ai_conversation'},
        ))

    # Calendar events

    async def list_events(
        self,
        user_id: str,
        start: Optional[str] = None,
        end: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        query = self.db.table(self.events_table).select('*').eq('user_id', user_id)
        if start:
            query = query.gte('start_datetime', start)
        if end:
            query = query.lte('start_datetime', end)
        return await self.db.execute(query.order('start_datetime'), 'list events')

    async def list_upcoming_events(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        limit: int
    ) -> List[Dict[str, Any]]:
        return await self.db.execute(
            self.db.table(self.events_table)
            .select('title, start_datetime, location')
            .eq('user_id', user_id)
            .gte('start_datetime', _local_timestamp(start))
            .lte('start_datetime', _local_timestamp(end))
            .order('start_datetime')
            .limit(limit),
            'list upcoming events'
        )

    async def delete_event(self, event_id: str, user_id: str) -> None:
        """Delete an event and the note it was created from."""
        rows = await self.db.execute(
            self.db.table(self.events_table).delete().eq('id', event_id).eq('user_id', user_id),
            'delete event'
        )
        if not rows:
            raise NotFoundError("Event")
        note_id = rows[0].get('note_id')
        if note_id:
            await self.db.execute(
                self.db.table(self.notes_table).delete().eq('id', note_id).eq('user_id', user_id),
                'delete event note'
            )

    # Notifications

    async def create_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        notification_type: str = 'info',
        related_entity_type: Optional[str] = None,
        related_entity_id: Optional[str] = None
    ) -> Dict[str, Any]:
        row = {
            'user_id': user_id,
            'title': title,
            'message': message,
            'type': notification_type,
            'related_entity_type': related_entity_type,
            'related_entity_id': related_entity_id,
        }
        rows = await self.db.execute(
            self.db.table(self.notifications_table).insert(row),
            'create notification'
        )
        if not rows:
            raise PersistenceError("create notification returned no row")
        return rows[0]

    async def list_notifications(
        self,
        user_id: str,
        unread_only: bool = False,
        limit: int = NOTIFICATIONS_PAGE_SIZE
    ) -> List[Dict[str, Any]]:
        query = self.db.table(self.notifications_table).select('*').eq('user_id', user_id)
        if unread_only:
            query = query.eq('is_read', False)
        return await self.db.execute(
            query.order('created_at', desc=True).limit(limit),
            'list notifications'
        )

    async def unread_count(self, user_id: str) -> int:
        rows = await self.db.execute(
            self.db.table(self.notifications_table).select('id').eq('user_id', user_id).eq('is_read', False),
            'count unread notifications'
        )
        return len(rows)

    async def mark_notification_read(self, notification_id: str, user_id: str) -> Dict[str, Any]:
        rows = await self.db.execute(
            self.db.table(self.notifications_table)
            .update({'is_read': True})
            .eq('id', notification_id)
            .eq('user_id', user_id),
            'mark notification read'
        )
        if not rows:
            raise NotFoundError("Notification")
        return rows[0]

    async def mark_all_notifications_read(self, user_id: str) -> int:
        rows = await self.db.execute(
            self.db.table(self.notifications_table)
            .update({'is_read': True})
            .eq('user_id', user_id)
            .eq('is_read', False),
            'mark all notifications read'
        )
        return len(rows)

    async def delete_notification(self, notification_id: str, user_id: str) -> None:
        rows = await self.db.execute(
            self.db.table(self.notifications_table).delete().eq('id', notification_id).eq('user_id', user_id),
            'delete notification'
        )
        if not rows:
            raise NotFoundError("Notification")

    # Password vault

    def _require_cipher(self) -> VaultCipher:
        if self.cipher is None:
            raise PersistenceError("Vault cipher is not configured")
        return self.cipher

    @staticmethod
    def _public_entry(row: Dict[str, Any]) -> Dict[str, Any]:
        return {key: value for key, value in row.items() if key != 'password_encrypted'}

    async def create_vault_entry(self, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        if not fields.get('title') or not fields.get('password'):
            raise ValidationError("Title and password are required")
        row = {key: fields[key] for key in VAULT_FIELDS if fields.get(key) is not None}
        row['user_id'] = user_id
        row['password_encrypted'] = self._require_cipher().encrypt(fields['password'])
        rows = await self.db.execute(
            self.db.table(self.vault_table).insert(row),
            'create vault entry'
        )
        if not rows:
            raise PersistenceError("create vault entry returned no row")
        return self._public_entry(rows[0])

    async def list_vault_entries(self, user_id: str, category: Optional[str] = None) -> List[Dict[str, Any]]:
        query = self.db.table(self.vault_table).select(VAULT_COLUMNS).eq('user_id', user_id)
        if category:
            query = query.eq('category', category)
        return await self.db.execute(
            query.order('is_favorite', desc=True).order('title'),
            'list vault entries'
        )

    async def get_vault_entry(self, entry_id: str, user_id: str) -> Dict[str, Any]:
        """The only read that returns the decrypted password."""
        rows = await self.db.execute(
            self.db.table(self.vault_table).select('*').eq('id', entry_id).eq('user_id', user_id),
            'get vault entry'
        )
        if not rows:
            raise NotFoundError("Password")
        entry = self._public_entry(rows[0])
        entry['password'] = self._require_cipher().decrypt(rows[0]['password_encrypted'])
        return entry

    async def update_vault_entry(self, entry_id: str, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        row = {key: fields[key] for key in VAULT_FIELDS if fields.get(key) is not None}
        if fields.get('password'):
            row['password_encrypted'] = self._require_cipher().encrypt(fields['password'])
        if not row:
            raise ValidationError("No fields to update")
        row['updated_at'] = _utcnow()
        rows = await self.db.execute(
            self.db.table(self.vault_table).update(row).eq('id', entry_id).eq('user_id', user_id),
            'update vault entry'
        )
        if not rows:
            raise NotFoundError("Password")
        return self._public_entry(rows[0])

    async def delete_vault_entry(self, entry_id: str, user_id: str) -> None:
        rows = await self.db.execute(
            self.db.table(self.vault_table).delete().eq('id', entry_id).eq('user_id', user_id),
            'delete vault entry'
        )
        if not rows:
            raise NotFoundError("Password")
