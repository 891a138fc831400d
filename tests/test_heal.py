import datetime as dt
import json

import pytest
import responses

from madmin.errors import ErrorResponse
from madmin.heal import (
    BgHealState,
    DriveState,
    HealCommands,
    HealDriveInfo,
    HealingDisk,
    HealOpts,
    HealResultItem,
    HealScanMode,
    HealStartSuccess,
)

BASE = "https://localhost:9000/minio/admin/v3"


@pytest.fixture
def client():
    c = HealCommands("localhost:9000", "placeholder", "secret", True)
    c.max_retry = 1
    return c


@pytest.fixture
def rsps():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        yield mock


def _drive_item():
    rs = HealResultItem()
    for i in range(20):
        if i < 4:
            state = DriveState.MISSING
        elif 4 < i < 15:
            state = DriveState.OFFLINE
        elif i > 15:
            state = DriveState.CORRUPT
        else:
            state = DriveState.OK
        rs.before.append(HealDriveInfo(state=state.value))
        rs.after.append(HealDriveInfo(state=state.value))
    return rs


def test_heal_drive_counts():
    rs = _drive_item()
    assert rs.get_online_counts() == (2, 2)
    assert rs.get_offline_counts() == (10, 10)
    assert rs.get_corrupted_counts() == (4, 4)
    assert rs.get_missing_counts() == (4, 4)


def test_empty_item_counts_are_zero():
    assert HealResultItem().get_missing_counts() == (0, 0)


def test_heal_opts_equal_ignores_recreate_and_nolock():
    a = HealOpts(recursive=True, scan_mode=HealScanMode.DEEP)
    b = HealOpts(recursive=True, scan_mode=HealScanMode.DEEP, recreate=True, no_lock=True)
    assert a.equal(b)
    assert not a.equal(HealOpts(recursive=True, scan_mode=HealScanMode.NORMAL))
    assert not a.equal(HealOpts(recursive=True, dry_run=True, scan_mode=HealScanMode.DEEP))


def test_heal_opts_round_trip():
    opts = HealOpts(recursive=True, dry_run=True, remove=True, recreate=True,
                    scan_mode=HealScanMode.NORMAL, no_lock=True)
    data = opts.to_dict()
    assert data == {"recursive": True, "dryRun": True, "remove": True,
                    "recreate": True, "scanMode": 1, "nolock": True}
    assert HealOpts.from_dict(data) == opts


def test_heal_rejects_both_force_flags(client):
    with pytest.raises(ErrorResponse) as info:
        client.heal("mybucket", "", HealOpts(), "", True, True)
    assert info.value.code == "InvalidArgument"
    assert info.value.message == "forceStart and forceStop set to true is not allowed"


def test_heal_start(client, rsps):
    rsps.add(
        responses.POST,
        BASE + "/heal/mybucket/myprefix",
        json={"clientToken": "token", "clientAddress": "10.0.0.1",
              "startTime": "2021-06-01T10:00:00Z"},
    )
    start, status = client.heal("mybucket", "myprefix", HealOpts(recursive=True),
                                "", True, False)
    assert start.client_token == "token"
    assert start.client_address == "10.0.0.1"
    assert start.start_time == dt.datetime(2021, 6, 1, 10, tzinfo=dt.timezone.utc)
    assert status.items == []
    request = rsps.calls[0].request
    assert "forceStart=true" in request.url
    assert json.loads(request.body)["recursive"] is True


def test_heal_without_bucket_ignores_prefix(client, rsps):
    rsps.add(responses.POST, BASE + "/heal/", json={"clientToken": "token"})
    start, _ = client.heal("", "myprefix", None, "", False, True)
    assert start.client_token == "token"
    assert rsps.calls[0].request.url.startswith(BASE + "/heal/?")
    assert "forceStop=true" in rsps.calls[0].request.url


def test_heal_status_request(client, rsps):
    body = {
        "summary": "finished",
        "detail": "",
        "startTime": "2021-06-01T10:00:00Z",
        "settings": {"recursive": True, "dryRun": False, "remove": False,
                     "recreate": False, "scanMode": 2, "nolock": False},
        "items": [
            {
                "resultId": 1,
                "type": "object",
                "bucket": "mybucket",
                "object": "myobject",
                "before": {"drives": [{"uuid": "u1", "endpoint": "/d1", "state": "missing"}]},
                "after": {"drives": [{"uuid": "u1", "endpoint": "/d1", "state": "ok"}]},
                "objectSize": 42,
            }
        ],
    }
    rsps.add(responses.POST, BASE + "/heal/mybucket", json=body)
    start, status = client.heal("mybucket", "", HealOpts(), "token")
    assert start == HealStartSuccess()
    assert status.summary == "finished"
    assert status.heal_settings.scan_mode == HealScanMode.DEEP
    item = status.items[0]
    assert item.object_name == "myobject"
    assert item.object_size == 42
    assert item.get_missing_counts() == (1, 0)
    assert item.get_online_counts() == (0, 1)
    request = rsps.calls[0].request
    assert "clientToken=token" in request.url
    assert not request.body


def test_heal_server_error_status(client, rsps):
    rsps.add(
        responses.POST,
        BASE + "/heal/mybucket",
        json={"Code": "XMinioHealNoSuchProcess", "Message": "No such heal process"},
        status=400,
    )
    with pytest.raises(ErrorResponse) as info:
        client.heal("mybucket")
    assert info.value.code == "XMinioHealNoSuchProcess"


def test_heal_error_after_success(client, rsps):
    rsps.add(
        responses.POST,
        BASE + "/heal/mybucket",
        json={"Code": "XMinioHealError", "Message": "failed", "startTime": 5},
    )
    with pytest.raises(ErrorResponse) as info:
        client.heal("mybucket")
    assert info.value.code == "XMinioHealError"
    assert str(info.value) == "failed"


def test_heal_unknown_structure(client, rsps):
    rsps.add(responses.POST, BASE + "/heal/mybucket", json="oops")
    with pytest.raises(TypeError):
        client.heal("mybucket")


def test_background_heal_status(client, rsps):
    body = {
        "ScannedItemsCount": 7,
        "HealDisks": ["/d1"],
        "sets": [
            {"id": "s1", "pool_index": 1, "set_index": 2, "heal_status": "healing",
             "heal_priority": "high", "disks": [{"endpoint": "/d1"}]}
        ],
    }
    rsps.add(responses.POST, BASE + "/background-heal/status", json=body)
    state = client.background_heal_status()
    assert state.scanned_items_count == 7
    assert state.heal_disks == ["/d1"]
    assert state.sets[0].id == "s1"
    assert state.sets[0].pool_index == 1
    assert state.sets[0].disks == [{"endpoint": "/d1"}]


def test_bg_heal_state_field_names_are_case_insensitive():
    state = BgHealState.from_dict({"scanneditemscount": 3, "healdisks": ["/d2"]})
    assert state.scanned_items_count == 3
    assert state.heal_disks == ["/d2"]
    assert state.sets == []


def test_healing_disk_from_dict():
    disk = HealingDisk.from_dict(
        {
            "id": "disk-1",
            "disk_index": 3,
            "endpoint": "/d3",
            "started": "2021-06-01T10:00:00Z",
            "objects_healed": 11,
            "current_bucket": "mybucket",
            "current_object": "myobject",
            "queued_buckets": ["a", "b"],
        }
    )
    assert disk.disk_index == 3
    assert disk.started == dt.datetime(2021, 6, 1, 10, tzinfo=dt.timezone.utc)
    assert disk.last_update is None
    assert disk.objects_healed == 11
    assert disk.bucket == "mybucket"
    assert disk.object_name == "myobject"
    assert disk.queued_buckets == ["a", "b"]


def test_result_item_from_dict_rejects_non_object():
    with pytest.raises(TypeError):
        HealResultItem.from_dict([1, 2])