import datetime as dt
import errno
import hashlib
import io
import re

import pytest
import requests
import responses

from madmin.api import (
    BaseClient,
    Credentials,
    Options,
    redact_authorization,
    sign_v4,
)
from madmin.errors import ErrorResponse, error_from_response

INFO_URL = "https://localhost:9000/minio/admin/v3/info"
WHEN = dt.datetime(2021, 1, 2, 3, 4, 5, tzinfo=dt.timezone.utc)


def make_client(**kwargs):
    client = BaseClient("localhost:9000", "placeholder", "secret", True)
    client.retry_unit = 0
    for name, value in kwargs.items():
        setattr(client, name, value)
    return client


@pytest.fixture
def mock():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


def test_new_client_builds_secure_target_url():
    client = BaseClient("localhost:9000", "food", "secret", True)
    assert client.make_target_url("/v3/info") == INFO_URL


def test_insecure_client_uses_http():
    client = BaseClient("localhost:9000", "food", "secret", False)
    assert client.make_target_url("/v3/info").startswith("http://localhost:9000/minio/admin")


@pytest.mark.parametrize("endpoint", ["", "http://localhost:9000", "localhost:9000/path"])
def test_invalid_endpoint_raises(endpoint):
    with pytest.raises(ErrorResponse) as info:
        BaseClient(endpoint, "food", "secret", True)
    assert info.value.code == "InvalidArgument"


def test_target_url_query_is_sorted_and_encoded():
    client = make_client()
    url = client.make_target_url("/v3/x", {"b": "x y", "a": "1"})
    assert url.endswith("/v3/x?a=1&b=x%20y")


def test_set_app_info_extends_user_agent():
    client = make_client()
    base = client.user_agent()
    client.set_app_info("app", "1.0")
    assert client.user_agent() == base + " app/1.0"
    client.set_app_info("", "2.0")
    assert client.user_agent() == base + " app/1.0"


def test_credentials_round_trip():
    creds = Credentials("placeholder", "secret", "token", WHEN)
    restored = Credentials.from_dict(creds.to_dict())
    assert restored == creds


def test_credentials_zero_expiration():
    creds = Credentials(access_key="placeholder")
    data = creds.to_dict()
    assert data["expiration"] == "0001-01-01T00:00:00Z"
    assert "secretKey" not in data
    assert Credentials.from_dict(data).expiration is None


def test_sign_v4_authorization_format():
    signed = sign_v4("GET", INFO_URL, {}, hashlib.sha256(b"").hexdigest(),
                     "placeholder", "secret", "", "", WHEN)
    pattern = (
        r"^AWS4-HMAC-SHA256 Credential=placeholder/20210102/us-east-1/s3/aws4_request, "
        r"SignedHeaders=host;x-amz-content-sha256;x-amz-date, Signature=[0-9a-f]{64}$"
    )
    assert re.match(pattern, signed["Authorization"])
    assert signed["X-Amz-Date"] == "20210102T030405Z"
    assert signed["Host"] == "localhost:9000"


def test_sign_v4_depends_on_secret_and_region():
    payload = hashlib.sha256(b"").hexdigest()
    first = sign_v4("GET", INFO_URL, {}, payload, "placeholder", "secret", "", "", WHEN)
    again = sign_v4("GET", INFO_URL, {}, payload, "placeholder", "secret", "", "", WHEN)
    other = sign_v4("GET", INFO_URL, {}, payload, "placeholder", "token", "", "", WHEN)
    regional = sign_v4("GET", INFO_URL, {}, payload, "placeholder", "secret", "", "eu-west-1", WHEN)
    assert first["Authorization"] == again["Authorization"]
    assert first["Authorization"] != other["Authorization"]
    assert "/eu-west-1/s3/aws4_request" in regional["Authorization"]


def test_sign_v4_ignores_user_agent():
    payload = hashlib.sha256(b"").hexdigest()
    one = sign_v4("GET", INFO_URL, {"User-Agent": "a"}, payload, "placeholder", "secret", "", "", WHEN)
    two = sign_v4("GET", INFO_URL, {"User-Agent": "b"}, payload, "placeholder", "secret", "", "", WHEN)
    assert one["Authorization"] == two["Authorization"]


def test_sign_v4_session_token_is_signed():
    payload = hashlib.sha256(b"").hexdigest()
    signed = sign_v4("GET", INFO_URL, {}, payload, "placeholder", "secret", "token", "", WHEN)
    assert signed["X-Amz-Security-Token"] == "token"
    assert "x-amz-security-token" in signed["Authorization"]


def test_sign_v4_without_credentials_leaves_headers():
    signed = sign_v4("GET", INFO_URL, {"A": "1"}, "abc", "", "", "", "", WHEN)
    assert signed == {"A": "1"}


def test_redact_authorization_hides_key_and_signature():
    access_key_id = "PLACEHOLDER"
    signed = sign_v4("GET", INFO_URL, {}, "abc", access_key_id, "secret", "", "", WHEN)
    redacted = redact_authorization(signed["Authorization"])
    assert "Credential=**REDACTED**/" in redacted
    assert redacted.endswith("Signature=**REDACTED**")
    assert access_key_id not in redacted


def test_execute_method_success_signs_request(mock):
    mock.add(responses.GET, INFO_URL, json={}, status=200)
    client = make_client()
    resp = client._execute_method("GET", "/v3/info", {"a": "1"})
    assert resp.status_code == 200
    sent = mock.calls[0].request
    assert sent.url == INFO_URL + "?a=1"
    assert sent.headers["Authorization"].startswith("AWS4-HMAC-SHA256 Credential=placeholder/")
    assert sent.headers["X-Amz-Content-Sha256"] == hashlib.sha256(b"").hexdigest()
    assert sent.headers["User-Agent"] == client.user_agent()


def test_execute_method_retries_retryable_status(mock):
    mock.add(responses.GET, INFO_URL, json={"Code": "SlowDown"}, status=503)
    mock.add(responses.GET, INFO_URL, json={}, status=200)
    client = make_client()
    resp = client._execute_method("GET", "/v3/info")
    assert resp.status_code == 200
    assert len(mock.calls) == 2


def test_execute_method_returns_non_retryable_error_response(mock):
    mock.add(responses.GET, INFO_URL,
             json={"Code": "AccessDenied", "Message": "Access Denied"}, status=403)
    client = make_client()
    resp = client._execute_method("GET", "/v3/info")
    assert resp.status_code == 403
    assert len(mock.calls) == 1
    err = error_from_response(resp)
    assert err.code == "AccessDenied"
    assert err.message == "Access Denied"


def test_connection_refused_is_not_retried(mock):
    refused = requests.ConnectionError(ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused"))
    mock.add(responses.GET, INFO_URL, body=refused)
    client = make_client()
    with pytest.raises(requests.ConnectionError):
        client._execute_method("GET", "/v3/info")
    assert len(mock.calls) == 1


def test_other_network_errors_are_retried(mock):
    mock.add(responses.GET, INFO_URL, body=requests.ConnectionError("reset by peer"))
    client = make_client(max_retry=3)
    with pytest.raises(requests.ConnectionError):
        client._execute_method("GET", "/v3/info")
    assert len(mock.calls) == 3


def test_from_options_sends_session_token(mock):
    mock.add(responses.GET, INFO_URL, json={}, status=200)
    options = Options(creds=Credentials("placeholder", "secret", "token"), secure=True)
    client = BaseClient.from_options("localhost:9000", options)
    resp = client._execute_method("GET", "/v3/info")
    assert resp.status_code == 200
    sent = mock.calls[0].request
    assert sent.headers["X-Amz-Security-Token"] == "token"


def test_trace_output_is_redacted(mock):
    mock.add(responses.GET, INFO_URL, json={}, status=200)
    client = make_client()
    out = io.StringIO()
    client.trace_on(out)
    client._execute_method("GET", "/v3/info")
    text = out.getvalue()
    assert text.startswith("---------START-HTTP---------\n")
    assert text.endswith("---------END-HTTP---------\n")
    assert "Signature=**REDACTED**" in text
    client.trace_off()
    client._execute_method("GET", "/v3/info")
    assert out.getvalue() == text


def test_custom_session_is_used(mock):
    mock.add(responses.GET, INFO_URL, json={}, status=200)
    session = requests.Session()
    session.headers["X-Custom"] = "1"
    client = make_client()
    client.set_session(session)
    resp = client._execute_method("GET", "/v3/info")
    assert resp.status_code == 200
    assert mock.calls[0].request.headers["X-Custom"] == "1"