"""
Test suite for the Replicate transports.

These tests exercise both transports against mocked sessions/clients, so no
API calls are made and no token is needed.
"""

import logging
from unittest.mock import Mock

import httpx
import pytest
import requests
from replicate.exceptions import ReplicateError

from autopilot.errors import (
    AuthenticationFailed,
    InvalidModelOutput,
    MissingCredentialsError,
    ProviderError,
    ProviderTimeout,
    QuotaExceeded,
    RateLimited,
)
from autopilot.services.replicate_client import ReplicateSDKClient
from autopilot.services.replicate_http_client import (
    ReplicateHTTPClient,
    extract_output_url,
    split_model_ref,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MODEL = "owner/model:abc123"
GET_URL = "https://api.replicate.com/v1/predictions/p1"
CANCEL_URL = "https://api.replicate.com/v1/predictions/p1/cancel"


class FakeTime:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def _response(status_code, body):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = body
    response.text = str(body)
    return response


def _prediction(status, **extra):
    body = {"id": "p1", "status": status, "urls": {"get": GET_URL, "cancel": CANCEL_URL}}
    body.update(extra)
    return body


def _http_client(session, fake_time, **kwargs):
    kwargs.setdefault("max_wait", 10.0)
    kwargs.setdefault("poll_interval", 1.0)
    return ReplicateHTTPClient(
        "r8_test",
        session=session,
        sleep=fake_time.sleep,
        clock=fake_time.clock,
        **kwargs,
    )


def _limiter(acquired=True):
    limiter = Mock()
    limiter.acquire.return_value = acquired
    return limiter


def test_split_model_ref():
    assert split_model_ref("owner/model:abc") == ("owner/model", "abc")
    assert split_model_ref("owner/model") == ("owner/model", None)


def test_extract_output_url():
    assert extract_output_url(" https://x.png ") == "https://x.png"
    assert extract_output_url(["https://a.png", "https://b.png"]) == "https://a.png"
    with pytest.raises(InvalidModelOutput):
        extract_output_url([])


def test_http_client_requires_token():
    with pytest.raises(MissingCredentialsError):
        ReplicateHTTPClient(None)
    with pytest.raises(MissingCredentialsError):
        ReplicateHTTPClient("")


def test_http_run_creates_and_polls_prediction():
    session = Mock()
    session.post.return_value = _response(201, _prediction("starting"))
    session.get.side_effect = [
        _response(200, _prediction("processing")),
        _response(200, _prediction("succeeded", output="https://out.png")),
    ]
    limiter = _limiter()
    fake_time = FakeTime()

    output = _http_client(session, fake_time, rate_limiter=limiter).run(MODEL, {"scale": 2})

    assert output == "https://out.png"
    url = session.post.call_args.args[0]
    kwargs = session.post.call_args.kwargs
    assert url == "https://api.replicate.com/v1/predictions"
    assert kwargs["json"] == {"version": "abc123", "input": {"scale": 2}}
    assert kwargs["headers"]["Authorization"] == "Token r8_test"
    assert session.get.call_count == 2
    assert fake_time.sleeps == [1.0, 1.0]
    limiter.acquire.assert_called_once()
    limiter.report_success.assert_called_once()


def test_http_run_without_version_uses_model_endpoint():
    session = Mock()
    session.post.return_value = _response(201, _prediction("succeeded", output=["https://out.png"]))

    output = _http_client(session, FakeTime()).run("owner/model", {})

    assert output == ["https://out.png"]
    assert session.post.call_args.args[0] == "https://api.replicate.com/v1/models/owner/model/predictions"
    assert session.post.call_args.kwargs["json"] == {"input": {}}


def test_http_limiter_timeout_raises_rate_limited():
    session = Mock()
    with pytest.raises(RateLimited):
        _http_client(session, FakeTime(), rate_limiter=_limiter(acquired=False)).run(MODEL, {})
    session.post.assert_not_called()


def test_http_429_is_reported_and_not_retried():
    session = Mock()
    session.post.return_value = _response(429, {"detail": "Request was throttled."})
    limiter = _limiter()

    with pytest.raises(RateLimited):
        _http_client(session, FakeTime(), rate_limiter=limiter).run(MODEL, {})

    assert session.post.call_count == 1
    limiter.report_429.assert_called_once()
    limiter.report_success.assert_not_called()


@pytest.mark.parametrize(
    "status_code, error_type",
    [(401, AuthenticationFailed), (402, QuotaExceeded), (422, ProviderError)],
)
def test_http_client_errors_map_to_kinds(status_code, error_type):
    session = Mock()
    session.post.return_value = _response(status_code, {"detail": "nope"})
    with pytest.raises(error_type) as info:
        _http_client(session, FakeTime()).run(MODEL, {})
    assert info.value.status_code == status_code


def test_http_server_errors_are_retried_with_backoff():
    session = Mock()
    session.post.side_effect = [
        _response(503, {"detail": "unavailable"}),
        _response(502, {"detail": "bad gateway"}),
        _response(201, _prediction("succeeded", output="https://out.png")),
    ]
    fake_time = FakeTime()

    output = _http_client(session, fake_time, max_retries=2, retry_delay=2.0, retry_backoff=2.0).run(MODEL, {})

    assert output == "https://out.png"
    assert fake_time.sleeps == [2.0, 4.0]


def test_http_retries_each_take_a_limiter_token():
    session = Mock()
    session.post.side_effect = [
        _response(503, {"detail": "unavailable"}),
        requests.exceptions.ConnectionError("reset"),
        _response(201, _prediction("succeeded", output="https://out.png")),
    ]
    limiter = _limiter()

    _http_client(session, FakeTime(), rate_limiter=limiter, max_retries=2).run(MODEL, {})

    assert limiter.acquire.call_count == 3
    assert session.post.call_count == 3


def test_http_retry_stops_when_limiter_times_out():
    session = Mock()
    session.post.return_value = _response(503, {"detail": "unavailable"})
    limiter = Mock()
    limiter.acquire.side_effect = [True, False]

    with pytest.raises(RateLimited):
        _http_client(session, FakeTime(), rate_limiter=limiter, max_retries=2).run(MODEL, {})
    assert session.post.call_count == 1


def test_http_server_errors_exhaust_retries():
    session = Mock()
    session.post.return_value = _response(500, {"detail": "boom"})
    fake_time = FakeTime()

    with pytest.raises(ProviderError, match="after 2 attempts"):
        _http_client(session, fake_time, max_retries=1).run(MODEL, {})
    assert session.post.call_count == 2


def test_http_connection_errors_are_retried():
    session = Mock()
    session.post.side_effect = [
        requests.exceptions.ConnectionError("reset"),
        _response(201, _prediction("succeeded", output="https://out.png")),
    ]
    assert _http_client(session, FakeTime()).run(MODEL, {}) == "https://out.png"


def test_http_request_timeout_maps_to_provider_timeout():
    session = Mock()
    session.post.side_effect = requests.exceptions.Timeout("slow")
    with pytest.raises(ProviderTimeout):
        _http_client(session, FakeTime()).run(MODEL, {})


def test_http_failed_prediction_is_classified():
    session = Mock()
    session.post.return_value = _response(
        201, _prediction("failed", error="You have insufficient credit to run this model.")
    )
    with pytest.raises(QuotaExceeded):
        _http_client(session, FakeTime()).run(MODEL, {})


def test_http_unknown_status_is_invalid_output():
    session = Mock()
    session.post.return_value = _response(201, _prediction("exploded"))
    with pytest.raises(InvalidModelOutput):
        _http_client(session, FakeTime()).run(MODEL, {})


def test_http_prediction_is_cancelled_after_max_wait():
    session = Mock()
    session.post.return_value = _response(201, _prediction("starting"))
    session.get.return_value = _response(200, _prediction("processing"))
    fake_time = FakeTime()

    with pytest.raises(ProviderTimeout):
        _http_client(session, fake_time, max_wait=5.0, poll_interval=2.0).run(MODEL, {})

    assert session.post.call_args.args[0] == CANCEL_URL
    assert fake_time.now >= 5.0


def _sdk_prediction(status, output=None, error=None, final_status="succeeded", final_output=None):
    prediction = Mock()
    prediction.id = "p1"
    prediction.status = status
    prediction.output = output
    prediction.error = error

    def reload():
        prediction.status = final_status
        prediction.output = final_output

    prediction.reload.side_effect = reload
    return prediction


def _sdk_client(client, fake_time=None, **kwargs):
    fake_time = fake_time or FakeTime()
    return ReplicateSDKClient(
        "r8_test",
        client=client,
        sleep=fake_time.sleep,
        clock=fake_time.clock,
        poll_interval=1.0,
        **kwargs,
    )


def test_sdk_client_requires_token():
    with pytest.raises(MissingCredentialsError):
        ReplicateSDKClient(None, client=Mock())


def test_sdk_run_with_version_polls_until_done():
    client = Mock()
    client.predictions.create.return_value = _sdk_prediction("starting", final_output="https://out.png")
    limiter = _limiter()

    output = _sdk_client(client, rate_limiter=limiter).run(MODEL, {"scale": 4})

    assert output == "https://out.png"
    client.predictions.create.assert_called_once_with(version="abc123", input={"scale": 4})
    limiter.report_success.assert_called_once()


def test_sdk_run_without_version_uses_model_predictions():
    client = Mock()
    client.models.predictions.create.return_value = _sdk_prediction("succeeded", output="https://out.png")

    assert _sdk_client(client).run("owner/model", {}) == "https://out.png"
    client.models.predictions.create.assert_called_once_with(model="owner/model", input={})


def test_sdk_failed_prediction_is_classified():
    client = Mock()
    client.predictions.create.return_value = _sdk_prediction("failed", error="Rate limit exceeded")
    with pytest.raises(RateLimited):
        _sdk_client(client).run(MODEL, {})


def test_sdk_api_error_status_maps_to_kind():
    client = Mock()
    client.predictions.create.side_effect = ReplicateError(status=402, detail="Payment required")
    with pytest.raises(QuotaExceeded):
        _sdk_client(client).run(MODEL, {})


def test_sdk_429_is_reported_to_limiter():
    client = Mock()
    client.predictions.create.side_effect = ReplicateError(status=429, detail="Too many requests")
    limiter = _limiter()
    with pytest.raises(RateLimited):
        _sdk_client(client, rate_limiter=limiter).run(MODEL, {})
    limiter.report_429.assert_called_once()


def test_sdk_network_timeout_maps_to_provider_timeout():
    client = Mock()
    client.predictions.create.side_effect = httpx.ReadTimeout("slow")
    with pytest.raises(ProviderTimeout):
        _sdk_client(client).run(MODEL, {})


def test_sdk_prediction_is_cancelled_after_max_wait():
    client = Mock()
    prediction = _sdk_prediction("processing", final_status="processing")
    client.predictions.create.return_value = prediction

    with pytest.raises(ProviderTimeout):
        _sdk_client(client, max_wait=3.0).run(MODEL, {})
    prediction.cancel.assert_called_once()
