import asyncio
import logging
from typing import Any, List, Optional

from supabase import create_client, Client

from lib.config import get_settings
from lib.error_handler import PersistenceError

logger = logging.getLogger(__name__)

def create_supabase_client(url: Optional[str] = None, key: Optional[str] = None) -> Client:
    """Create the Supabase client used by the storage layer"""
    settings = get_settings()
    url = url or settings.supabase_url
    key = key or settings.supabase_key
    if not url or not key:
        raise PersistenceError("SUPABASE_URL and SUPABASE_KEY must be set")
    return create_client(url, key)

class Database:
    """Thin async wrapper over the Supabase client.

    Query builders are assembled by the caller and executed here, off the
    event loop. Any driver error is logged and re-raised as PersistenceError
    so routes can answer with a generic 500.
    """

    def __init__(self, client: Client):
        self.client = client

    def table(self, name: str):
        return self.client.table(name)

    async def execute(self, query, operation: str) -> List[Any]:
        try:
            result = await asyncio.to_thread(query.execute)
        except Exception as e:
            logger.error(f"Database error during {operation}: {str(e)}")
            raise PersistenceError(f"{operation} failed: {str(e)}") from e

        if hasattr(result, 'error') and result.error:
            logger.error(f"Supabase error during {operation}: {result.error}")
            raise PersistenceError(f"{operation} failed: {result.error}")

        data = result.data
        if data is None:
            return []
        return data if isinstance(data, list) else [data]

    async def rpc(self, function: str, params: dict, operation: str) -> List[Any]:
        return await self.execute(self.client.rpc(function, params), operation)
