import pytest

from lib.crypto import VaultCipher, derive_key
from lib.error_handler import AppError


def test_encrypt_uses_random_nonce():
    cipher = VaultCipher('test-vault-seed')

    first = cipher.encrypt('hunter2')
    second = cipher.encrypt('hunter2')

    assert first != second
    assert len(first.split(':')[0]) == 24
    assert cipher.decrypt(first) == 'hunter2'


def test_wrong_key_cannot_decrypt():
    token = VaultCipher('seed-one').encrypt('hunter2')

    with pytest.raises(AppError):
        VaultCipher('seed-two').decrypt(token)


@pytest.mark.parametrize("token", ["not-a-token", "zz:zz", "abcd"])
def test_malformed_token(token):
    with pytest.raises(AppError):
        VaultCipher('test-vault-seed').decrypt(token)


def test_derive_key():
    assert len(derive_key('short')) == 32
    assert derive_key('a' * 100) != derive_key('a' * 99)
    with pytest.raises(ValueError):
        derive_key('')
