"""Tests for JWT service."""

import pytest

from admission.services.jwt_service import JWTService
from tests.conftest import TEST_SECRET, make_token


@pytest.fixture
def jwt_service():
    """Create JWT service instance."""
    return JWTService(TEST_SECRET)


def test_validate_valid_token(jwt_service):
    """Test validation of valid JWT token."""
    result = jwt_service.validate_token(make_token(sub="user_2abc"))

    assert result is not None
    assert result["sub"] == "user_2abc"
    assert result["email"] == "ada@example.com"


def test_validate_expired_token(jwt_service):
    """Test validation of expired JWT token."""
    assert jwt_service.validate_token(make_token(expires_in=-3600)) is None


def test_validate_invalid_token(jwt_service):
    """Test validation of invalid JWT token."""
    assert jwt_service.validate_token("invalid.token.here") is None


def test_validate_wrong_secret():
    assert JWTService("another-secret").validate_token(make_token()) is None


def test_identifiers():
    assert JWTService.get_primary_identifier({"sub": "user-456"}) == "user-456"
    assert JWTService.get_primary_identifier({"user_id": 123}) == "123"
    assert JWTService.get_primary_identifier({}) is None
    assert JWTService.get_secondary_identifier({"email": "a@b.c"}) == "a@b.c"


@pytest.mark.parametrize(
    "header,expected",
    [
        (None, None),
        ("", None),
        ("Bearer abc", "abc"),
        ("bearer abc", "abc"),
        ("Basic abc", None),
        ("Bearer", None),
        ("Bearer a b", None),
    ],
)
def test_extract_bearer(header, expected):
    assert JWTService.extract_bearer(header) == expected


def test_verify_missing_header(jwt_service):
    result = jwt_service.verify(None)

    assert result.verified is False
    assert result.error == "Missing Authorization header"


def test_verify_bad_format(jwt_service):
    result = jwt_service.verify("Token abc")

    assert result.verified is False
    assert result.error == "Invalid Authorization header format"


def test_verify_invalid_token(jwt_service):
    result = jwt_service.verify("Bearer invalid.token.here")

    assert result.verified is False
    assert result.error == "Invalid or expired token"


def test_verify_valid_token(jwt_service):
    token = make_token(sub="user_2abc")

    result = jwt_service.verify(f"Bearer {token}")

    assert result.verified is True
    assert result.identifiers.primary == "user_2abc"
    assert result.identifiers.secondary == "ada@example.com"
    assert result.token == token


def test_verify_token_without_subject(jwt_service):
    """A valid signature without an identifier is still reported as verified."""
    result = jwt_service.verify(f"Bearer {make_token(sub=None, email=None)}")

    assert result.verified is True
    assert result.identifiers.primary is None
