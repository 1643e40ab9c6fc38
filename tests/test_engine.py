"""Orchestration engine behaviour for the document approval workflow."""

import asyncio

import pytest

from approvalflow.contracts import (
    Completed,
    DeliveryResult,
    InterviewFeedback,
    RuntimeState,
    Suspended,
)
from approvalflow.exceptions import (
    InvalidInputError,
    UnknownInstanceError,
    UnknownSignalError,
)
from approvalflow.history.models import EntryKind


def _statuses(history):
    return [e.payload["status"] for e in history if e.kind == EntryKind.STATUS_CHANGED]


@pytest.mark.asyncio
async def test_start_waits_for_feedback(engine, offer_letter):
    handle = await engine.start(offer_letter)
    status = await handle.status()

    assert status.runtime_state == RuntimeState.RUNNING
    assert status.custom_status == "Waiting for feedback"
    assert status.output is None

    history = await engine.get_history(handle.instance_id)
    assert [e.kind for e in history] == [EntryKind.INPUT_RECORDED, EntryKind.STATUS_CHANGED]
    assert history[0].payload["title"] == "Offer Letter"
    assert history[0].payload["application_id"] == "A1"


@pytest.mark.asyncio
async def test_scenario_a_feedback_in_any_order_reaches_submission(
    engine, notifier, offer_letter, feedback
):
    handle = await engine.start(offer_letter)
    seen = []
    for name in ("InterviewFeedback", "ContractFeedback", "BackgroundCheckFeedback"):
        assert await handle.signal(name, feedback[name]) == DeliveryResult.ACCEPTED
        seen.append((await handle.status()).custom_status)

    assert seen == [
        "Interview feedback collected",
        "Contract feedback collected",
        "Awaiting submission",
    ]
    history = await engine.get_history(handle.instance_id)
    assert _statuses(history) == [
        "Waiting for feedback",
        "Interview feedback collected",
        "Contract feedback collected",
        "Background check feedback collected",
        "Awaiting submission",
    ]

    assert len(notifier.calls) == 1
    instance_id, document = notifier.calls[0]
    assert instance_id == handle.instance_id
    assert document.properties.title == "Offer Letter"
    assert document.interview_feedback.feedback == "great fit"
    assert document.background_check_feedback.feedback == "clear"
    assert document.contract_feedback.feedback == "terms ok"

    activity = [e for e in history if e.kind == EntryKind.ACTIVITY_COMPLETED]
    assert len(activity) == 1
    assert activity[0].step == "SubmitDocument"
    assert activity[0].payload["result"] is True


@pytest.mark.asyncio
async def test_scenario_b_approval_completes(engine, offer_letter, feedback):
    handle = await engine.start(offer_letter)
    for name, payload in feedback.items():
        await handle.signal(name, payload)

    assert await handle.signal("SubmissionApproval", True) == DeliveryResult.ACCEPTED

    status = await handle.status()
    assert status.runtime_state == RuntimeState.COMPLETED
    assert status.custom_status == "Submitted document"
    assert status.output == "Submitted: True"
    assert await engine.resume(handle.instance_id) == Completed(output="Submitted: True")


@pytest.mark.asyncio
async def test_rejected_submission_renders_false(engine, offer_letter, feedback):
    handle = await engine.start(offer_letter)
    for name, payload in feedback.items():
        await handle.signal(name, payload)
    await handle.signal("SubmissionApproval", False)

    assert (await handle.status()).output == "Submitted: False"


@pytest.mark.asyncio
async def test_scenario_c_early_approval_is_queued(engine, notifier, offer_letter, feedback):
    handle = await engine.start(offer_letter)

    assert await handle.signal("SubmissionApproval", True) == DeliveryResult.ACCEPTED
    status = await handle.status()
    assert status.custom_status == "Waiting for feedback"
    assert status.pending_signals == ["SubmissionApproval"]
    assert notifier.calls == []

    for name, payload in feedback.items():
        await handle.signal(name, payload)

    status = await handle.status()
    assert status.runtime_state == RuntimeState.COMPLETED
    assert status.output == "Submitted: True"
    assert status.pending_signals == []

    history = await engine.get_history(handle.instance_id)
    approval = next(e for e in history if e.step == "SubmissionApproval")
    activity = next(e for e in history if e.kind == EntryKind.ACTIVITY_COMPLETED)
    submitted = next(
        e for e in history
        if e.kind == EntryKind.STATUS_CHANGED and e.payload["status"] == "Submitted document"
    )
    assert approval.sequence < activity.sequence < submitted.sequence


@pytest.mark.asyncio
async def test_duplicate_signal_is_ignored(engine, notifier, offer_letter, feedback):
    handle = await engine.start(offer_letter)
    await handle.signal("InterviewFeedback", feedback["InterviewFeedback"])
    before = await engine.get_history(handle.instance_id)

    result = await handle.signal(
        "InterviewFeedback", {"feedback": "changed my mind", "isPassed": False}
    )

    assert result == DeliveryResult.ALREADY_SATISFIED
    assert await engine.get_history(handle.instance_id) == before

    await handle.signal("BackgroundCheckFeedback", feedback["BackgroundCheckFeedback"])
    await handle.signal("ContractFeedback", feedback["ContractFeedback"])
    _, document = notifier.calls[0]
    assert document.interview_feedback == InterviewFeedback(feedback="great fit", is_passed=True)


@pytest.mark.asyncio
async def test_signal_after_completion_has_no_effect(engine, offer_letter, feedback):
    handle = await engine.start(offer_letter)
    for name, payload in feedback.items():
        await handle.signal(name, payload)
    await handle.signal("SubmissionApproval", True)
    before = await engine.get_history(handle.instance_id)

    assert await handle.signal("SubmissionApproval", False) == DeliveryResult.INSTANCE_CLOSED
    assert await engine.get_history(handle.instance_id) == before


@pytest.mark.asyncio
async def test_resume_is_idempotent_while_suspended(engine, notifier, offer_letter, feedback):
    handle = await engine.start(offer_letter)
    for name, payload in feedback.items():
        await handle.signal(name, payload)
    before = await engine.get_history(handle.instance_id)

    for _ in range(3):
        outcome = await engine.resume(handle.instance_id)
        assert outcome == Suspended(waiting_for=["SubmissionApproval"])

    assert await engine.get_history(handle.instance_id) == before
    assert len(notifier.calls) == 1


@pytest.mark.asyncio
async def test_resume_reports_open_feedback_waits(engine, offer_letter, feedback):
    handle = await engine.start(offer_letter)
    await handle.signal("ContractFeedback", feedback["ContractFeedback"])

    outcome = await engine.resume(handle.instance_id)

    assert outcome == Suspended(waiting_for=["InterviewFeedback", "BackgroundCheckFeedback"])


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "properties",
    [
        {"title": "Offer Letter", "creator": "alice", "applicationId": "A1"},
        {"title": " ", "creator": "alice", "applicationId": "A1", "createdDate": "2026-10-12T09:00:00Z"},
        {"title": "Offer Letter", "creator": "alice", "createdDate": "not a date", "applicationId": "A1"},
    ],
)
async def test_start_rejects_malformed_input(engine, store, properties):
    with pytest.raises(InvalidInputError):
        await engine.start(properties)
    assert await store.list_instances() == []


@pytest.mark.asyncio
async def test_start_rejects_duplicate_instance_id(engine, offer_letter):
    await engine.start(offer_letter, instance_id="onboarding-1")
    with pytest.raises(InvalidInputError):
        await engine.start(offer_letter, instance_id="onboarding-1")


@pytest.mark.asyncio
async def test_signal_client_errors(engine, offer_letter):
    handle = await engine.start(offer_letter)
    before = await engine.get_history(handle.instance_id)

    with pytest.raises(UnknownSignalError):
        await engine.signal(handle.instance_id, "ReferenceCheck", {})
    with pytest.raises(UnknownInstanceError):
        await engine.signal("missing", "InterviewFeedback", {"feedback": "x", "isPassed": True})
    with pytest.raises(InvalidInputError):
        await engine.signal(handle.instance_id, "InterviewFeedback", {"feedback": "x"})

    assert await engine.get_history(handle.instance_id) == before


@pytest.mark.asyncio
async def test_query_status_unknown_instance(engine):
    with pytest.raises(UnknownInstanceError):
        await engine.query_status("missing")


@pytest.mark.asyncio
async def test_history_sequence_numbers_are_contiguous(engine, offer_letter, feedback):
    handle = await engine.start(offer_letter)
    await handle.signal("SubmissionApproval", True)
    for name, payload in feedback.items():
        await handle.signal(name, payload)

    history = await engine.get_history(handle.instance_id)
    assert [e.sequence for e in history] == list(range(len(history)))
    assert history[-1].kind == EntryKind.OUTPUT_SET


@pytest.mark.asyncio
async def test_concurrent_signals_are_serialized(engine, notifier, offer_letter, feedback):
    handle = await engine.start(offer_letter)

    results = await asyncio.gather(
        *(handle.signal(name, payload) for name, payload in feedback.items()),
        handle.signal("InterviewFeedback", {"feedback": "late duplicate", "isPassed": False}),
    )

    assert results.count(DeliveryResult.ACCEPTED) == 3
    assert results[-1] == DeliveryResult.ALREADY_SATISFIED
    history = await engine.get_history(handle.instance_id)
    assert [e.sequence for e in history] == list(range(len(history)))
    statuses = _statuses(history)
    for collected in (
        "Interview feedback collected",
        "Background check feedback collected",
        "Contract feedback collected",
    ):
        assert statuses.count(collected) == 1
    assert statuses[-1] == "Awaiting submission"
    assert len(notifier.calls) == 1
    _, document = notifier.calls[0]
    assert document.interview_feedback == InterviewFeedback(feedback="great fit", is_passed=True)


@pytest.mark.asyncio
async def test_finished_instances_release_per_instance_state(engine, offer_letter, feedback):
    finished = []
    for _ in range(5):
        handle = await engine.start(offer_letter)
        for name, payload in feedback.items():
            await handle.signal(name, payload)
        await handle.signal("SubmissionApproval", True)
        finished.append(handle.instance_id)
    running = await engine.start(offer_letter)

    with pytest.raises(UnknownInstanceError):
        await engine.resume("missing")
    with pytest.raises(UnknownInstanceError):
        await engine.signal("missing", "SubmissionApproval", True)

    assert engine._locks == {}
    assert not any(engine.correlation.is_registered(i) for i in finished)
    assert engine.correlation.is_registered(running.instance_id)
    assert (await engine.query_status(finished[0])).runtime_state == RuntimeState.COMPLETED
