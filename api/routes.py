from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import sys
from typing import Any, Dict, List, Optional

from flask import Flask, jsonify, request
from pydantic import ValidationError as PydanticValidationError
from werkzeug.exceptions import HTTPException

from api.models import ConversationTurn, NoteCreate, NotePatch, SessionContext
from api.services.chat import ResponseGenerator
from api.services.context import ContextAssembler
from api.services.extractor import EntityExtractor
from api.services.router import IntentRouter
from api.services.speech import SpeechSessionManager
from api.services.storage import StorageService
from lib.config import Settings, get_settings
from lib.crypto import VaultCipher
from lib.database import Database, create_supabase_client
from lib.error_handler import AppError, ValidationError
from lib.openai_client import OpenAIClient

# Configure detailed logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stdout,
    force=True  # Ensure our config takes precedence
)

# Create logger for this file
logger = logging.getLogger(__name__)

IMAGE_INSTRUCTION = (
    "Decide whether this image shows an event (invitation, poster, flyer, screenshot of an event). "
    "If it is an event, extract its date, time, title and location as one sentence. "
    "If it is NOT an event, briefly describe what the image shows. "
    'Reply in JSON: {"isEvent": boolean, "text": string}'
)
IMAGE_HASHTAG = '#photo'

VAULT_REQUEST_KEYS = {
    'title': 'title',
    'username': 'username',
    'email': 'email',
    'password': 'password',
    'url': 'url',
    'notes': 'notes',
    'category': 'category',
    'icon': 'icon',
    'isFavorite': 'is_favorite',
}


@dataclass
class Services:
    openai_client: OpenAIClient
    storage: StorageService
    context_assembler: ContextAssembler
    generator: ResponseGenerator
    router: IntentRouter


def build_services(settings: Optional[Settings] = None) -> Services:
    """Wire the pipeline against the real OpenAI and Supabase clients."""
    settings = settings or get_settings()

    logger.info("Initializing OpenAI client...")
    openai_client = OpenAIClient()

    logger.info("Initializing Supabase client...")
    database = Database(create_supabase_client(settings.supabase_url, settings.supabase_key))

    storage = StorageService(database, cipher=VaultCipher(settings.vault_encryption_key))
    context_assembler = ContextAssembler(storage)
    generator = ResponseGenerator(openai_client)
    router = IntentRouter(
        openai_client=openai_client,
        extractor=EntityExtractor(openai_client),
        storage=storage,
        context_assembler=context_assembler,
        generator=generator,
        speech_manager=SpeechSessionManager()
    )
    logger.info("All services initialized successfully")
    return Services(
        openai_client=openai_client,
        storage=storage,
        context_assembler=context_assembler,
        generator=generator,
        router=router
    )


def _body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _user_id(body: Optional[Dict[str, Any]] = None) -> str:
    if body and body.get('userId'):
        return str(body['userId'])
    return request.args.get('userId') or get_settings().default_user_id


def _required_text(body: Dict[str, Any], key: str, message: str) -> str:
    value = body.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(message)
    return value.strip()


def _parse_turns(raw: Any) -> List[ConversationTurn]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("Conversation must be a list")
    try:
        return [ConversationTurn.model_validate(turn) for turn in raw]
    except PydanticValidationError as e:
        logger.warning(f"Invalid conversation turn: {str(e)}")
        raise ValidationError("Invalid conversation turn") from e


def _vault_fields(body: Dict[str, Any]) -> Dict[str, Any]:
    return {field: body[key] for key, field in VAULT_REQUEST_KEYS.items() if key in body}


def create_app(services: Optional[Services] = None) -> Flask:
    app = Flask(__name__)
    app.json.ensure_ascii = False

    if services is None:
        services = build_services()
    app.extensions['services'] = services
    storage = services.storage
    router = services.router

    @app.errorhandler(AppError)
    def handle_app_error(e: AppError):
        logger.error(f"{type(e).__name__} ({e.status_code}): {e.message}")
        return jsonify({'error': e.user_message}), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({'error': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e: Exception):
        logger.error(f"Unhandled error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500

    @app.route('/api/health', methods=['GET'])
    def health():
        """Basic health check"""
        return jsonify({
            'status': 'ok',
            'message': 'Backend is running',
            'timestamp': datetime.now(timezone.utc).isoformat()
        })

    # Notes

    @app.route('/api/notes', methods=['POST'])
    async def create_note():
        body = _body()
        content = _required_text(body, 'content', 'Content is required')
        action = await router.capture(content, _user_id(body), router.now())
        return jsonify({'success': True, **action.to_response()})

    @app.route('/api/notes', methods=['GET'])
    async def list_notes():
        notes = await storage.list_notes(_user_id())
        return jsonify({'notes': notes})

    @app.route('/api/notes/<note_id>', methods=['PATCH'])
    async def update_note(note_id: str):
        body = _body()
        note = await storage.update_note(note_id, _user_id(body), NotePatch.from_request(body))
        return jsonify({'note': note})

    @app.route('/api/notes/<note_id>', methods=['DELETE'])
    async def delete_note(note_id: str):
        await storage.delete_note(note_id, _user_id())
        return jsonify({'success': True})

    @app.route('/api/notes/from-image', methods=['POST'])
    async def create_note_from_image():
        body = _body()
        image = _required_text(body, 'imageBase64', 'Image required')
        user_id = _user_id(body)

        info = await services.openai_client.describe_image(image, IMAGE_INSTRUCTION, get_settings().openai_vision_model)
        text = str(info.get('text') or '').strip()
        logger.info(f"Image analysis: isEvent={info.get('isEvent')} text={text[:80]}")
        if not text:
            raise ValidationError("Could not read anything from the image")

        if info.get('isEvent'):
            action = await router.capture(text, user_id, router.now(), image_data=image)
            return jsonify({**action.to_response(), 'type': 'event'})

        note = await storage.create_note(NoteCreate(
            user_id=user_id,
            content=text,
            note_type='simple_note',
            hashtags=[IMAGE_HASHTAG],
            ai_classification={'context': 'from_image'},
            image_data=image,
        ))
        return jsonify({'note': note, 'type': 'note'})

    # Calendar

    @app.route('/api/calendar/events', methods=['GET'])
    async def list_events():
        events = await storage.list_events(
            _user_id(),
            start=request.args.get('startDate'),
            end=request.args.get('endDate')
        )
        return jsonify({'events': events})

    @app.route('/api/calendar/events/<event_id>', methods=['DELETE'])
    async def delete_event(event_id: str):
        await storage.delete_event(event_id, _user_id())
        return jsonify({'success': True})

    # Assistant

    @app.route('/api/assistant/process', methods=['POST'])
    async def process_message():
        body = _body()
        message = _required_text(body, 'message', 'Message is required')
        action = await router.route(
            message,
            _parse_turns(body.get('conversationHistory')),
            _user_id(body),
            session_context=SessionContext.from_request(body.get('enrichedContext')),
            use_native_voice=bool(body.get('useNativeVoice'))
        )
        logger.info(f"Assistant result: {action.type}")
        return jsonify(action.to_response())

    @app.route('/api/ai/chat', methods=['POST'])
    async def chat():
        body = _body()
        message = _required_text(body, 'message', 'Message is required')
        context_block = await services.context_assembler.build_context(_user_id(body), router.now())
        reply = await services.generator.generate(message, context_block)
        return jsonify({'response': reply, 'timestamp': datetime.now(timezone.utc).isoformat()})

    @app.route('/api/ai/save-conversation', methods=['POST'])
    async def save_conversation():
        body = _body()
        turns = _parse_turns(body.get('conversation'))
        if not turns:
            raise ValidationError("Conversation array is required")
        note = await router.save_conversation(turns, _user_id(body), router.now())
        return jsonify({'success': True, 'note': note})

    # Password vault

    @app.route('/api/vault/passwords', methods=['POST'])
    async def create_password():
        body = _body()
        entry = await storage.create_vault_entry(_user_id(body), _vault_fields(body))
        return jsonify({'password': entry}), 201

    @app.route('/api/vault/passwords', methods=['GET'])
    async def list_passwords():
        entries = await storage.list_vault_entries(_user_id(), category=request.args.get('category'))
        return jsonify({'passwords': entries})

    @app.route('/api/vault/passwords/<entry_id>', methods=['GET'])
    async def get_password(entry_id: str):
        entry = await storage.get_vault_entry(entry_id, _user_id())
        return jsonify({'password': entry})

    @app.route('/api/vault/passwords/<entry_id>', methods=['PATCH'])
    async def update_password(entry_id: str):
        body = _body()
        entry = await storage.update_vault_entry(entry_id, _user_id(body), _vault_fields(body))
        return jsonify({'password': entry})

    @app.route('/api/vault/passwords/<entry_id>', methods=['DELETE'])
    async def delete_password(entry_id: str):
        await storage.delete_vault_entry(entry_id, _user_id())
        return jsonify({'success': True})

    # Notifications

    @app.route('/api/notifications', methods=['POST'])
    async def create_notification():
        body = _body()
        if not body.get('title') or not body.get('message'):
            raise ValidationError("Title and message are required")
        notification = await storage.create_notification(
            _user_id(body),
            title=body['title'],
            message=body['message'],
            notification_type=body.get('type') or 'info',
            related_entity_type=body.get('relatedEntityType'),
            related_entity_id=body.get('relatedEntityId')
        )
        return jsonify({'notification': notification})

    @app.route('/api/notifications', methods=['GET'])
    async def list_notifications():
        unread_only = request.args.get('unreadOnly') == 'true'
        notifications = await storage.list_notifications(_user_id(), unread_only=unread_only)
        return jsonify({'notifications': notifications})

    @app.route('/api/notifications/unread-count', methods=['GET'])
    async def unread_count():
        return jsonify({'count': await storage.unread_count(_user_id())})

    @app.route('/api/notifications/mark-all-read', methods=['PATCH'])
    async def mark_all_read():
        updated = await storage.mark_all_notifications_read(_user_id(_body()))
        return jsonify({'success': True, 'updated': updated})

    @app.route('/api/notifications/<notification_id>/read', methods=['PATCH'])
    async def mark_read(notification_id: str):
        notification = await storage.mark_notification_read(notification_id, _user_id(_body()))
        return jsonify({'notification': notification})

    @app.route('/api/notifications/<notification_id>', methods=['DELETE'])
    async def delete_notification(notification_id: str):
        await storage.delete_notification(notification_id, _user_id())
        return jsonify({'success': True})

    return app
