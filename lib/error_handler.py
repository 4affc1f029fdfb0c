from typing import Optional
import logging

logger = logging.getLogger(__name__)

class AppError(Exception):
    def __init__(self, message: str, status_code: int = 500, user_message: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.user_message = user_message or "An error occurred. Please try again later."
        super().__init__(self.message)

class ValidationError(AppError):
    def __init__(self, message: str):
        super().__init__(message, status_code=400, user_message=message)

class NotFoundError(AppError):
    def __init__(self, entity: str):
        super().__init__(f"{entity} not found", status_code=404, user_message=f"{entity} not found")

class PersistenceError(AppError):
    def __init__(self, message: str):
        super().__init__(message, status_code=500, user_message="Internal server error")

class ProviderError(AppError):
    """Raised when a language or speech provider call fails or times out."""
    def __init__(self, message: str):
        super().__init__(message, status_code=502, user_message="The assistant is unavailable right now.")

class GenerationError(AppError):
    """Raised by strict generation when no usable reply could be produced."""
    def __init__(self, message: str):
        super().__init__(message, status_code=500, user_message="Internal server error")

class ErrorHandler:
    @staticmethod
    def handle_classification_error(error: Exception) -> None:
        logger.error(f"Classification error: {str(error)}")

    @staticmethod
    def handle_generation_error(error: Exception) -> str:
        logger.error(f"Generation error: {str(error)}")
        return "Sorry, I had trouble with that. Could you rephrase it?"

    @staticmethod
    def handle_speech_error(error: Exception) -> None:
        logger.error(f"Speech error: {str(error)}")
