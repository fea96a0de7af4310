"""Offline tests for exception taxonomy.

Each test constructs an exception and asserts type relationships and message
round-tripping, ensuring ``str(exc)`` equals the provided message.
"""

from __future__ import annotations

import pytest
from custom_components.reponest.exceptions import (
    NoDataError,
    NotFoundError,
    ParseError,
    RepoNestError,
    StorageError,
    ValidationError,
)
from homeassistant.exceptions import HomeAssistantError


def test_validation_error_carries_code():
    exc = ValidationError("url must start with https://github.com/", code="bad-scheme")
    assert isinstance(exc, RepoNestError)
    assert exc.code == "bad-scheme"
    assert str(exc) == "url must start with https://github.com/"


def test_validation_error_default_code():
    assert ValidationError("bad").code == "invalid"


@pytest.mark.parametrize(
    "cls, message",
    [
        (NotFoundError, "folder not found"),
        (ParseError, "root.folders[0]: expected object"),
        (StorageError, "storage failure"),
        (NoDataError, "no seed document available"),
    ],
)
def test_error_message_and_type(cls, message):
    exc = cls(message)
    assert isinstance(exc, RepoNestError)
    assert isinstance(exc, HomeAssistantError)
    assert str(exc) == message
