"""
Tests for token handling and one-time code hashing.
"""

from datetime import timedelta

import pytest
from jose import jwt

from core.config import settings
from core.security import (
    create_access_token,
    decode_token,
    generate_one_time_code,
    hash_one_time_code,
    verify_one_time_code,
)


@pytest.mark.unit
class TestAccessTokens:
    def test_round_trip(self) -> None:
        token = create_access_token({"sub": "42"})

        payload = decode_token(token)

        assert payload is not None
        assert payload["sub"] == "42"
        assert payload["type"] == "access"

    def test_expired_token_rejected(self) -> None:
        token = create_access_token({"sub": "42"}, expires_delta=timedelta(seconds=-5))
        assert decode_token(token) is None

    def test_wrong_type_rejected(self) -> None:
        token = create_access_token({"sub": "42"})
        assert decode_token(token, expected_type="refresh") is None

    def test_foreign_signature_rejected(self) -> None:
        forged = jwt.encode({"sub": "42", "type": "access"}, "not-the-key", algorithm=settings.JWT_ALGORITHM)
        assert decode_token(forged) is None

    def test_garbage_rejected(self) -> None:
        assert decode_token("not-a-jwt") is None


@pytest.mark.unit
class TestOneTimeCodes:
    def test_code_length_and_digits(self) -> None:
        code = generate_one_time_code(8)
        assert len(code) == 8
        assert code.isdigit()

    def test_default_length_from_settings(self) -> None:
        assert len(generate_one_time_code()) == settings.ONE_TIME_CODE_LENGTH

    def test_hash_is_not_plain_code(self) -> None:
        assert hash_one_time_code("123456") != "123456"

    def test_verify(self) -> None:
        stored = hash_one_time_code("123456")

        assert verify_one_time_code("123456", stored) is True
        assert verify_one_time_code("654321", stored) is False
