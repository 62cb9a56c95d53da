"""
Tests for JWT helpers
"""

from datetime import timedelta

import pytest
from jose import jwt

from lms_tenancy.auth import create_access_token, decode_access_token
from lms_tenancy.config import settings
from lms_tenancy.exceptions import AuthenticationError


class TestAccessTokens:
    def test_round_trip(self):
        token = create_access_token({"sub": "user-1"})
        assert decode_access_token(token) == "user-1"

    def test_sub_required(self):
        with pytest.raises(ValueError):
            create_access_token({"email": "a@b.com"})

    def test_expired_token(self):
        token = create_access_token({"sub": "user-1"}, expires_delta=timedelta(seconds=-1))

        with pytest.raises(AuthenticationError) as exc_info:
            decode_access_token(token)
        assert exc_info.value.message == "Token has expired"

    def test_wrong_signature(self):
        token = jwt.encode({"sub": "user-1"}, "another-secret", algorithm=settings.jwt_algorithm)

        with pytest.raises(AuthenticationError) as exc_info:
            decode_access_token(token)
        assert exc_info.value.message == "Invalid token"

    def test_missing_sub_claim(self):
        token = jwt.encode({"email": "a@b.com"}, settings.secret_key, algorithm=settings.jwt_algorithm)

        with pytest.raises(AuthenticationError):
            decode_access_token(token)
