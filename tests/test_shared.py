import base64
import json

import pytest

from scriptstream.shared import events
from scriptstream.shared.client_utils import is_valid_token_format, mask_token, token_expiry
from scriptstream.shared.errors import (
    CONNECTION_FAILED_MESSAGE,
    NETWORK_ERROR_MESSAGE,
    SERVER_ERROR_MESSAGE,
    ApiError,
    MalformedPayloadError,
    RequestTimeoutError,
    SocketConnectionError,
)
from scriptstream.shared.models import RetryPolicy, StageInfo


def _segment(obj) -> str:
    return base64.urlsafe_b64encode(json.dumps(obj).encode()).rstrip(b"=").decode()


@pytest.mark.parametrize(
    "token, valid",
    [
        ("aaa.bbb.ccc", True),
        (f"{_segment({'alg': 'none'})}.{_segment({'sub': 'u'})}.sig-_", True),
        ("aaa.bbb", False),
        ("aaa..ccc", False),
        ("aa a.bbb.ccc", False),
        ("", False),
        (None, False),
    ],
)
def test_token_format(token, valid):
    assert is_valid_token_format(token) is valid


def test_token_expiry_reads_exp_claim():
    token = f"{_segment({'alg': 'none'})}.{_segment({'exp': 2_000_000_000})}.sig"
    assert token_expiry(token).year == 2033
    assert token_expiry("aaa.bbb.ccc") is None


def test_mask_token_never_prints_whole_token():
    assert mask_token("abcdefghijklmnop") == "abcdefgh..."
    assert mask_token(None) == "<none>"


def test_retry_policy_delays():
    policy = RetryPolicy()
    assert [policy.delay_for(i) for i in range(3)] == [1.0, 2.0, 4.0]
    assert 503 in policy.retryable_statuses
    assert 404 not in policy.retryable_statuses


def test_retry_policy_rejects_non_growing_multiplier():
    with pytest.raises(ValueError):
        RetryPolicy(multiplier=1.0)


def test_stage_info_accepts_wire_aliases():
    stage = StageInfo.model_validate({"stage": "generating", "progress": 30, "estimatedTimeRemaining": 12})
    assert stage.estimated_time_remaining == 12


def test_envelope_round_trip_and_garbage():
    message = events.decode_message(events.encode_message(events.PING, {"timestamp": 1}))
    assert (message.event, message.data) == ("ping", {"timestamp": 1})

    with pytest.raises(MalformedPayloadError):
        events.decode_message('{"data": {}}')
    with pytest.raises(MalformedPayloadError):
        events.decode_message("not json")


@pytest.mark.parametrize(
    "status, expected",
    [
        (401, "Your session has expired. Please log in again."),
        (429, "Too many requests. Please wait a moment and retry."),
        (502, SERVER_ERROR_MESSAGE),
        (418, "I'm a teapot today"),
    ],
)
def test_api_error_user_messages(status, expected):
    assert ApiError(status, "code", "I'm a teapot today").user_message == expected


def test_timeout_is_a_network_error():
    error = RequestTimeoutError("/generation", 30)
    assert error.user_message == NETWORK_ERROR_MESSAGE
    assert "30" in str(error)


def test_socket_error_user_message():
    assert SocketConnectionError("gave up", attempts=5).user_message == CONNECTION_FAILED_MESSAGE
