import threading

import pytest

from approvalflow.contracts import DeliveryResult
from approvalflow.correlation import EventCorrelationTable
from approvalflow.exceptions import UnknownSignalError


def test_deliver_then_consume():
    table = EventCorrelationTable()
    table.register("doc-1")

    assert table.deliver("doc-1", "InterviewFeedback", {"feedback": "ok"}) == DeliveryResult.ACCEPTED
    assert table.pending("doc-1") == ["InterviewFeedback"]
    assert table.try_consume("doc-1", "InterviewFeedback") == {"feedback": "ok"}
    # consuming again returns the same payload
    assert table.try_consume("doc-1", "InterviewFeedback") == {"feedback": "ok"}
    assert table.pending("doc-1") == []


def test_consume_before_arrival_returns_none():
    table = EventCorrelationTable()
    table.register("doc-1")

    assert table.try_consume("doc-1", "ContractFeedback") is None
    assert table.try_consume("doc-2", "ContractFeedback") is None


def test_duplicate_delivery_keeps_first_payload():
    table = EventCorrelationTable()
    table.register("doc-1")
    table.deliver("doc-1", "SubmissionApproval", True)

    assert table.deliver("doc-1", "SubmissionApproval", False) == DeliveryResult.ALREADY_SATISFIED
    assert table.try_consume("doc-1", "SubmissionApproval") is True


def test_unknown_instance_and_signal():
    table = EventCorrelationTable()

    assert table.deliver("ghost", "InterviewFeedback", {}) == DeliveryResult.UNKNOWN_INSTANCE
    with pytest.raises(UnknownSignalError):
        table.deliver("ghost", "ReferenceCheck", {})


def test_arrival_order_follows_delivery():
    table = EventCorrelationTable()
    table.register("doc-1")
    for name in ("ContractFeedback", "SubmissionApproval", "InterviewFeedback"):
        table.deliver("doc-1", name, None)

    wanted = ["InterviewFeedback", "BackgroundCheckFeedback", "ContractFeedback"]
    assert table.arrival_order("doc-1", wanted) == ["ContractFeedback", "InterviewFeedback"]


def test_hydrate_replaces_existing_slots():
    table = EventCorrelationTable()
    table.register("doc-1")
    table.deliver("doc-1", "ContractFeedback", "stale")

    table.hydrate("doc-1", [("InterviewFeedback", "a"), ("SubmissionApproval", True)])

    assert table.pending("doc-1") == ["InterviewFeedback", "SubmissionApproval"]
    assert table.try_consume("doc-1", "ContractFeedback") is None


def test_evict_forgets_instance():
    table = EventCorrelationTable()
    table.register("doc-1")
    table.evict("doc-1")

    assert not table.is_registered("doc-1")
    assert table.pending("doc-1") == []


def test_concurrent_duplicates_accept_exactly_one():
    table = EventCorrelationTable()
    table.register("doc-1")
    results = []
    results_lock = threading.Lock()

    def deliver(value):
        result = table.deliver("doc-1", "SubmissionApproval", value)
        with results_lock:
            results.append(result)

    threads = [threading.Thread(target=deliver, args=(i % 2 == 0,)) for i in range(32)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(DeliveryResult.ACCEPTED) == 1
    assert results.count(DeliveryResult.ALREADY_SATISFIED) == 31
