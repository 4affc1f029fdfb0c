import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from openai import OpenAI

from lib.config import get_settings
from lib.error_handler import ProviderError

logger = logging.getLogger(__name__)

AUDIO_FORMAT = 'wav'
AUDIO_MIME_TYPE = 'audio/wav'
MAX_HISTORY_MESSAGES = 20
LOCK_POLL_SECONDS = 0.1

SPEECH_INSTRUCTIONS = (
    "You are Memo, a friendly personal voice assistant. "
    "Speak naturally and briefly, 2-3 sentences at most."
)


@dataclass
class SpeechTurn:
    text: str
    audio_data: str
    mime_type: str = AUDIO_MIME_TYPE


class SpeechSession:
    """
    A long-lived conversation with an audio-capable chat model.

    Not safe for concurrent use: callers go through SpeechSessionManager,
    which allows one in-flight turn at a time.
    """

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: Optional[str] = None,
        voice: Optional[str] = None,
        timeout: Optional[float] = None,
        instructions: str = SPEECH_INSTRUCTIONS
    ):
        settings = get_settings()
        self.timeout = timeout or settings.provider_timeout_seconds
        self.client = client or OpenAI(api_key=settings.openai_api_key, timeout=self.timeout)
        self.model = model or settings.openai_speech_model
        self.voice = voice or settings.speech_voice
        self.instructions = instructions
        self.history: List[Dict[str, str]] = []
        self.connected = False

    def connect(self) -> None:
        self.history = [{"role": "system", "content": self.instructions}]
        self.connected = True
        logger.info(f"Speech session connected: model={self.model} voice={self.voice}")

    def close(self) -> None:
        self.history = []
        self.connected = False
        logger.info("Speech session closed")

    async def send_turn(self, prompt: str) -> SpeechTurn:
        """Send one user turn and return the spoken reply with its transcript."""
        if not self.connected:
            raise ProviderError("Speech session is not connected")

        messages = self.history + [{"role": "user", "content": prompt}]
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    self.client.chat.completions.create,
                    model=self.model,
                    modalities=["text", "audio"],
                    audio={"voice": self.voice, "format": AUDIO_FORMAT},
                    messages=messages
                ),
                timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise ProviderError(f"Speech turn timed out after {self.timeout}s") from e
        except Exception as e:
            raise ProviderError(f"Speech turn failed: {str(e)}") from e

        audio = response.choices[0].message.audio if response.choices else None
        if audio is None or not audio.data:
            raise ProviderError("Speech model returned no audio")

        text = (audio.transcript or "").strip()
        self.history = messages + [{"role": "assistant", "content": text}]
        # Keep the system instructions plus the most recent exchanges
        if len(self.history) > MAX_HISTORY_MESSAGES:
            self.history = self.history[:1] + self.history[-(MAX_HISTORY_MESSAGES - 1):]

        logger.info(f"Speech turn complete: {len(audio.data)} base64 chars, transcript: {text[:50]}")
        return SpeechTurn(text=text, audio_data=audio.data)


class _LockRequest:
    """A pending acquisition of the session lock that its caller may abandon."""

    def __init__(self, lock: threading.Lock):
        self._lock = lock
        self._guard = threading.Lock()
        self._abandoned = False
        self._acquired = False

    def wait(self) -> bool:
        # Runs in a worker thread; polls so an abandoned request stops waiting
        while True:
            got = self._lock.acquire(timeout=LOCK_POLL_SECONDS)
            with self._guard:
                if self._abandoned:
                    if got:
                        self._lock.release()
                    return False
                if got:
                    self._acquired = True
                    return True

    def abandon(self) -> None:
        with self._guard:
            self._abandoned = True
            if self._acquired:
                self._lock.release()


class SpeechSessionManager:
    """
    Single-slot owner of the shared speech session.

    The session is created lazily on first use. Turns are serialized by a
    thread lock because Flask async views each run on their own event loop.
    A turn that fails drops the session so the next caller reconnects.

    Usage:
        async with manager.acquire() as session:
            turn = await session.send_turn("Hello")
    """

    def __init__(self, session_factory: Callable[[], SpeechSession] = SpeechSession):
        self._session_factory = session_factory
        self._session: Optional[SpeechSession] = None
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def acquire(self):
        request = _LockRequest(self._lock)
        try:
            await asyncio.to_thread(request.wait)
        except asyncio.CancelledError:
            request.abandon()
            raise
        try:
            if self._session is None or not self._session.connected:
                self._session = self._session_factory()
                self._session.connect()
            try:
                yield self._session
            except ProviderError:
                self._drop_session()
                raise
        finally:
            self._lock.release()

    async def speak(self, prompt: str) -> SpeechTurn:
        async with self.acquire() as session:
            return await session.send_turn(prompt)

    def _drop_session(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def close(self) -> None:
        with self._lock:
            self._drop_session()
