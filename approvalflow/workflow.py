"""The document approval workflow: transition table and control logic."""

from __future__ import annotations

from typing import Dict

from .constants import (
    BACKGROUND_CHECK_FEEDBACK,
    CONTRACT_FEEDBACK,
    INTERVIEW_FEEDBACK,
    STATUS_AWAITING_SUBMISSION,
    STATUS_BACKGROUND_CHECK_COLLECTED,
    STATUS_CONTRACT_COLLECTED,
    STATUS_INTERVIEW_COLLECTED,
    STATUS_SUBMITTED_DOCUMENT,
    STATUS_WAITING_FOR_FEEDBACK,
    SUBMISSION_APPROVAL,
)
from .contracts import (
    BackgroundCheckFeedback,
    ContractFeedback,
    InterviewFeedback,
    WorkDocument,
)
from .replay import ReplayContext, Wait

INTERVIEW = Wait("interview", INTERVIEW_FEEDBACK, InterviewFeedback, STATUS_INTERVIEW_COLLECTED)
BACKGROUND_CHECK = Wait(
    "background_check",
    BACKGROUND_CHECK_FEEDBACK,
    BackgroundCheckFeedback,
    STATUS_BACKGROUND_CHECK_COLLECTED,
)
CONTRACT = Wait("contract", CONTRACT_FEEDBACK, ContractFeedback, STATUS_CONTRACT_COLLECTED)
APPROVAL = Wait("approval", SUBMISSION_APPROVAL, bool)

FEEDBACK_WAITS = (INTERVIEW, BACKGROUND_CHECK, CONTRACT)

WAITS_BY_SIGNAL: Dict[str, Wait] = {
    wait.signal: wait for wait in (*FEEDBACK_WAITS, APPROVAL)
}

# status step each wait records once its signal is consumed
WAIT_STEPS: Dict[str, str] = {signal: wait.name for signal, wait in WAITS_BY_SIGNAL.items()}


async def document_approval_workflow(ctx: ReplayContext) -> None:
    await ctx.set_status("begin", STATUS_WAITING_FOR_FEEDBACK)

    feedback = await ctx.when_all(FEEDBACK_WAITS)
    await ctx.call_activity(
        WorkDocument(
            properties=ctx.input,
            interview_feedback=feedback[INTERVIEW.name],
            background_check_feedback=feedback[BACKGROUND_CHECK.name],
            contract_feedback=feedback[CONTRACT.name],
        )
    )
    await ctx.set_status("submission", STATUS_AWAITING_SUBMISSION)

    approved = await ctx.wait_for(APPROVAL)
    await ctx.set_status(APPROVAL.name, STATUS_SUBMITTED_DOCUMENT)
    await ctx.set_output(f"Submitted: {approved}")
