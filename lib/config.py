from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()

DEFAULT_USER_ID = '00000000-0000-0000-0000-000000000001'

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    # OpenAI settings
    openai_api_key: str = ''
    openai_classify_model: str = 'gpt-4o-mini'
    openai_chat_model: str = 'gpt-4o-mini'
    openai_vision_model: str = 'gpt-4o'
    openai_speech_model: str = 'gpt-4o-audio-preview'
    speech_voice: str = 'alloy'
    classify_temperature: float = 0.2
    chat_temperature: float = 0.8
    provider_timeout_seconds: float = 25.0

    # Supabase settings
    supabase_url: str = ''
    supabase_key: str = ''

    # Server settings
    port: int = 3001
    log_level: str = 'INFO'

    # Vault settings
    vault_encryption_key: str = 'default-32-char-key-change-me!!'

    # Assistant settings
    default_user_id: str = DEFAULT_USER_ID
    timezone: str = 'UTC'
    privacy_hashtag: str = '#private'
    context_max_events: int = 20
    context_max_notes: int = 20
    context_window_days: int = 30
    context_char_budget: int = 4000

@lru_cache
def get_settings() -> Settings:
    return Settings()
