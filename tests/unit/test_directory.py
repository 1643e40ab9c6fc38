import base64
import json
from datetime import datetime, timedelta, timezone

import pytest

from approvalflow.config import DirectoryConfig
from approvalflow.contracts import InstanceSummary, RuntimeState
from approvalflow.directory import InstanceDirectory, decode_page_token, encode_page_token
from approvalflow.exceptions import InvalidInputError, InvalidPageTokenError

NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


def _summary(instance_id, state, age_days=0.0, status=None):
    created = NOW - timedelta(days=age_days)
    return InstanceSummary(
        instance_id=instance_id,
        runtime_state=state,
        custom_status=status,
        created_at=created,
        last_updated_at=created,
    )


@pytest.fixture
def directory():
    directory = InstanceDirectory(DirectoryConfig(default_page_size=100, max_page_size=1000))
    directory.publish(_summary("running-recent", RuntimeState.RUNNING, 1, "Awaiting submission"))
    directory.publish(_summary("pending-recent", RuntimeState.PENDING, 2))
    directory.publish(_summary("completed-recent", RuntimeState.COMPLETED, 1, "Submitted document"))
    directory.publish(_summary("running-old", RuntimeState.RUNNING, 10, "Waiting for feedback"))
    return directory


def test_lists_unfinished_instances_in_window(directory):
    page = directory.list_instances(created_after=NOW - timedelta(days=7))

    assert [s.instance_id for s in page.items] == ["pending-recent", "running-recent"]
    assert page.next_page_token is None


def test_status_filter_is_honoured(directory):
    page = directory.list_instances(
        statuses=[RuntimeState.COMPLETED], created_after=NOW - timedelta(days=30)
    )
    assert [s.instance_id for s in page.items] == ["completed-recent"]


def test_naive_created_after_is_treated_as_utc(directory):
    page = directory.list_instances(created_after=datetime(2026, 10, 1))
    assert [s.instance_id for s in page.items] == [
        "running-old",
        "pending-recent",
        "running-recent",
    ]


def test_default_window_uses_lookback_days():
    directory = InstanceDirectory(DirectoryConfig(lookback_days=7))
    now = datetime.now(timezone.utc)
    for instance_id, age in (("fresh", 1), ("stale", 8)):
        created = now - timedelta(days=age)
        directory.publish(
            InstanceSummary(
                instance_id=instance_id,
                runtime_state=RuntimeState.RUNNING,
                created_at=created,
                last_updated_at=created,
            )
        )

    assert [s.instance_id for s in directory.list_instances().items] == ["fresh"]


def test_pagination_walks_every_item_once():
    directory = InstanceDirectory()
    for i in range(25):
        directory.publish(_summary(f"doc-{i:02d}", RuntimeState.RUNNING, age_days=i / 100))

    seen = []
    token = None
    while True:
        page = directory.list_instances(
            created_after=NOW - timedelta(days=1), page_size=10, page_token=token
        )
        seen.extend(s.instance_id for s in page.items)
        token = page.next_page_token
        if token is None:
            break

    assert len(seen) == 25
    assert len(set(seen)) == 25
    # oldest first
    assert seen[0] == "doc-24"


def test_pagination_is_stable_when_instances_are_added():
    directory = InstanceDirectory()
    for i in range(4):
        directory.publish(_summary(f"doc-{i}", RuntimeState.RUNNING, age_days=(4 - i) / 10))

    first = directory.list_instances(created_after=NOW - timedelta(days=1), page_size=2)
    directory.publish(_summary("doc-new", RuntimeState.RUNNING))
    second = directory.list_instances(
        created_after=NOW - timedelta(days=1), page_size=2, page_token=first.next_page_token
    )

    assert [s.instance_id for s in first.items] == ["doc-0", "doc-1"]
    assert [s.instance_id for s in second.items] == ["doc-2", "doc-3"]
    assert second.next_page_token is not None


def test_publish_replaces_previous_summary(directory):
    directory.publish(_summary("running-recent", RuntimeState.COMPLETED, 1, "Submitted document"))

    assert directory.get("running-recent").runtime_state == RuntimeState.COMPLETED
    assert directory.get("missing") is None


@pytest.mark.parametrize("size", [0, -1, 1001])
def test_page_size_out_of_range_is_rejected(directory, size):
    with pytest.raises(InvalidInputError):
        directory.list_instances(page_size=size)


@pytest.mark.parametrize("token", ["not-base64!", "e30=", "bm90IGpzb24="])
def test_bad_page_token_is_rejected(directory, token):
    with pytest.raises(InvalidPageTokenError):
        directory.list_instances(created_after=NOW - timedelta(days=7), page_token=token)


def test_page_token_round_trip():
    summary = _summary("doc-1", RuntimeState.RUNNING)
    assert decode_page_token(encode_page_token(summary)) == (NOW, "doc-1")


def _craft_token(data):
    return base64.urlsafe_b64encode(json.dumps(data).encode()).decode()


@pytest.mark.parametrize(
    "data",
    [
        {"c": "2026-10-19T09:00:00", "i": "doc-1"},
        {"c": "2026-10-19T09:00:00+00:00", "i": 7},
        ["2026-10-19T09:00:00+00:00", "doc-1"],
    ],
)
def test_crafted_page_token_is_rejected(directory, data):
    with pytest.raises(InvalidPageTokenError):
        directory.list_instances(created_after=NOW - timedelta(days=7), page_token=_craft_token(data))
