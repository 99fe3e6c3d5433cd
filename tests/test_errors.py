import pytest

from agrismart.errors import (
    GENERIC_ERROR_MESSAGE,
    RATE_LIMIT_MESSAGE,
    AIServiceError,
    friendly_error,
    is_rate_limited,
)


@pytest.mark.parametrize(
    "message",
    [
        "[429 RESOURCE_EXHAUSTED] Resource has been exhausted (e.g. check quota).",
        "RESOURCE_EXHAUSTED",
        "Request failed with status code 429",
    ],
)
def test_rate_limit_messages_are_replaced(message):
    assert is_rate_limited(message)
    assert friendly_error(AIServiceError(message)) == RATE_LIMIT_MESSAGE


def test_other_messages_pass_through():
    exc = AIServiceError("[500 INTERNAL] An internal error has occurred.")
    assert friendly_error(exc) == "[500 INTERNAL] An internal error has occurred."
    assert friendly_error(ValueError("bad value")) == "bad value"


def test_empty_message_gets_generic_text():
    assert friendly_error(RuntimeError()) == GENERIC_ERROR_MESSAGE
    assert friendly_error(RuntimeError("   ")) == GENERIC_ERROR_MESSAGE
