import pytest
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
import sys
from pathlib import Path

# Add project root to Python path
project_root = str(Path(__file__).parent.parent)
sys.path.append(project_root)

from api.services.storage import StorageService
from lib.crypto import VaultCipher
from lib.database import Database

# Monday
REFERENCE_NOW = datetime(2025, 9, 29, 10, 0)
TEST_USER = '00000000-0000-0000-0000-000000000001'


class FakeQuery:
    """Records a PostgREST builder chain and answers execute() from the client's queue."""

    def __init__(self, table_name, client):
        self.table_name = table_name
        self.client = client
        self.calls = []

    def __getattr__(self, name):
        if name == 'not_':
            self.calls.append(('not_', (), {}))
            return self

        def method(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self
        return method

    def called(self, name):
        return [(args, kwargs) for call, args, kwargs in self.calls if call == name]

    def execute(self):
        self.client.executed.append(self)
        result = self.client.responses.pop(0) if self.client.responses else []
        if isinstance(result, Exception):
            raise result
        return SimpleNamespace(data=result, error=None)


class FakeSupabase:
    def __init__(self):
        self.executed = []
        self.responses = []

    def queue(self, *results):
        self.responses.extend(results)

    def table(self, name):
        return FakeQuery(name, self)

    def rpc(self, function, params):
        query = FakeQuery(f'rpc:{function}', self)
        query.calls.append(('rpc', (function, params), {}))
        return query


@pytest.fixture
def now():
    return REFERENCE_NOW


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def storage(fake_supabase):
    return StorageService(Database(fake_supabase), cipher=VaultCipher('test-vault-seed'))


@pytest.fixture
def mock_openai_client():
    client = MagicMock()
    client.complete_json = AsyncMock()
    client.complete_text = AsyncMock()
    client.describe_image = AsyncMock()
    return client
