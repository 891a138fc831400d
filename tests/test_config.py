import datetime as dt
import io
import json
from urllib.parse import parse_qs, urlsplit

import pytest
import responses

from madmin.config import (
    CONFIG_APPLIED_HEADER,
    MAX_CONFIG_JSON_SIZE,
    ConfigCommands,
    ConfigHistoryEntry,
    ConfigTooLargeError,
    Help,
    HelpKV,
)
from madmin.encrypt import decrypt_data, encrypt_data
from madmin.errors import ErrorResponse

BASE = "http://localhost:9000/minio/admin/v3"
SECRET = "secret"


@pytest.fixture(autouse=True)
def fips(monkeypatch):
    monkeypatch.setenv("MADMIN_FIPS", "1")


@pytest.fixture
def client():
    c = ConfigCommands("localhost:9000", "admin", SECRET, False)
    c.max_retry = 1
    return c


@pytest.fixture
def mock():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


def _query(call):
    return parse_qs(urlsplit(call.request.url).query, keep_blank_values=True)


def test_get_config_decrypts(client, mock):
    mock.add(responses.GET, BASE + "/config", body=encrypt_data(SECRET, b'{"a":1}'))
    assert client.get_config() == b'{"a":1}'


def test_get_config_error(client, mock):
    mock.add(
        responses.GET,
        BASE + "/config",
        json={"Code": "AccessDenied", "Message": "Access Denied"},
        status=403,
    )
    with pytest.raises(ErrorResponse) as info:
        client.get_config()
    assert info.value.code == "AccessDenied"
    assert str(info.value) == "Access Denied"


def test_set_config_sends_encrypted(client, mock):
    mock.add(responses.PUT, BASE + "/config")
    client.set_config(io.BytesIO(b'{"region":"x"}'))
    request = mock.calls[0].request
    assert request.method == "PUT"
    assert decrypt_data(SECRET, request.body) == b'{"region":"x"}'


def test_set_config_at_limit_accepted(client, mock):
    mock.add(responses.PUT, BASE + "/config")
    data = b"x" * MAX_CONFIG_JSON_SIZE
    client.set_config(data)
    assert decrypt_data(SECRET, mock.calls[0].request.body) == data


def test_set_config_too_large(client, mock):
    with pytest.raises(ConfigTooLargeError):
        client.set_config(io.BytesIO(b"x" * (MAX_CONFIG_JSON_SIZE + 1)))
    assert len(mock.calls) == 0


def test_set_config_empty_is_error(client, mock):
    with pytest.raises(EOFError):
        client.set_config(io.BytesIO(b""))
    assert len(mock.calls) == 0


def test_help_config_kv(client, mock):
    body = {
        "subSys": "region",
        "description": "label the location of the server",
        "multipleTargets": False,
        "keysHelp": [
            {"key": "name", "description": "name", "optional": True,
             "type": "string", "multipleTargets": False},
            {"key": "comment", "description": "c", "optional": True,
             "type": "sentence", "multipleTargets": False},
        ],
    }
    mock.add(responses.GET, BASE + "/help-config-kv", json=body)
    help_ = client.help_config_kv("region", "", env_only=True)
    assert help_.sub_sys == "region"
    assert help_.keys() == ["name", "comment"]
    assert help_.keys_help[1].type == "sentence"
    assert _query(mock.calls[0]) == {"subSys": ["region"], "key": [""], "env": [""]}


def test_help_config_kv_without_env(client, mock):
    mock.add(responses.GET, BASE + "/help-config-kv", json={"subSys": "api"})
    help_ = client.help_config_kv("api", "requests_max")
    assert help_.sub_sys == "api"
    assert help_.keys() == []
    assert "env" not in _query(mock.calls[0])


def test_help_rejects_unknown_fields():
    with pytest.raises(ValueError):
        Help.from_dict({"subSys": "api", "extra": 1})
    with pytest.raises(ValueError):
        HelpKV.from_dict({"key": "k", "bogus": True})


def test_list_config_history_default_count(client, mock):
    entries = [
        {"restoreId": "id-1", "createTime": "2006-01-02T15:04:05Z", "data": "region name=x"},
        {"restoreId": "id-2", "createTime": "2006-01-02T15:04:05Z", "data": ""},
    ]
    mock.add(
        responses.GET,
        BASE + "/list-config-history-kv",
        body=encrypt_data(SECRET, json.dumps(entries).encode()),
    )
    result = client.list_config_history_kv(0)
    assert _query(mock.calls[0]) == {"count": ["10"]}
    assert [e.restore_id for e in result] == ["id-1", "id-2"]
    assert result[0].data == "region name=x"
    assert result[0].create_time == dt.datetime(2006, 1, 2, 15, 4, 5, tzinfo=dt.timezone.utc)


def test_list_config_history_explicit_count(client, mock):
    mock.add(
        responses.GET,
        BASE + "/list-config-history-kv",
        body=encrypt_data(SECRET, b"null"),
    )
    assert client.list_config_history_kv(3) == []
    assert _query(mock.calls[0]) == {"count": ["3"]}


def test_create_time_formatted():
    entry = ConfigHistoryEntry.from_dict({"createTime": "2006-01-02T15:04:05Z"})
    assert entry.create_time_formatted() == "Mon, 02 Jan 2006 15:04:05 GMT"


def test_create_time_formatted_zero_time():
    assert ConfigHistoryEntry().create_time_formatted() == "Mon, 01 Jan 0001 00:00:00 GMT"


def test_clear_and_restore_history(client, mock):
    mock.add(responses.DELETE, BASE + "/clear-config-history-kv")
    mock.add(responses.PUT, BASE + "/restore-config-history-kv")
    assert client.clear_config_history_kv("all") is None
    assert client.restore_config_history_kv("id-1") is None
    assert mock.calls[0].request.method == "DELETE"
    assert _query(mock.calls[0]) == {"restoreId": ["all"]}
    assert mock.calls[1].request.method == "PUT"
    assert _query(mock.calls[1]) == {"restoreId": ["id-1"]}


def test_restore_history_error(client, mock):
    mock.add(
        responses.PUT,
        BASE + "/restore-config-history-kv",
        json={"Code": "XMinioConfigError", "Message": "no such restore id"},
        status=400,
    )
    with pytest.raises(ErrorResponse) as info:
        client.restore_config_history_kv("missing")
    assert info.value.code == "XMinioConfigError"
    assert info.value.message == "no such restore id"


def test_del_config_kv(client, mock):
    mock.add(responses.DELETE, BASE + "/del-config-kv")
    client.del_config_kv("region")
    assert decrypt_data(SECRET, mock.calls[0].request.body) == b"region"


def test_set_config_kv_applied(client, mock):
    mock.add(responses.PUT, BASE + "/set-config-kv", headers={CONFIG_APPLIED_HEADER: "true"})
    assert client.set_config_kv("region name=x") is False
    assert decrypt_data(SECRET, mock.calls[0].request.body) == b"region name=x"


def test_set_config_kv_needs_restart(client, mock):
    mock.add(responses.PUT, BASE + "/set-config-kv")
    assert client.set_config_kv("region name=x") is True


def test_get_config_kv(client, mock):
    mock.add(responses.GET, BASE + "/get-config-kv", body=encrypt_data(SECRET, b"region name=x"))
    assert client.get_config_kv("region") == b"region name=x"
    assert _query(mock.calls[0]) == {"key": ["region"]}


def test_get_config_kv_error(client, mock):
    mock.add(
        responses.GET,
        BASE + "/get-config-kv",
        json={"Code": "XMinioConfigError", "Message": "bad key"},
        status=400,
    )
    with pytest.raises(ErrorResponse) as info:
        client.get_config_kv("nope")
    assert info.value.code == "XMinioConfigError"