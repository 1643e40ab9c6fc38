"""Names and defaults shared across approvalflow modules."""

INTERVIEW_FEEDBACK = "InterviewFeedback"
BACKGROUND_CHECK_FEEDBACK = "BackgroundCheckFeedback"
CONTRACT_FEEDBACK = "ContractFeedback"
SUBMISSION_APPROVAL = "SubmissionApproval"

SIGNAL_NAMES = (
    INTERVIEW_FEEDBACK,
    BACKGROUND_CHECK_FEEDBACK,
    CONTRACT_FEEDBACK,
    SUBMISSION_APPROVAL,
)

SUBMIT_DOCUMENT = "SubmitDocument"

STATUS_WAITING_FOR_FEEDBACK = "Waiting for feedback"
STATUS_INTERVIEW_COLLECTED = "Interview feedback collected"
STATUS_BACKGROUND_CHECK_COLLECTED = "Background check feedback collected"
STATUS_CONTRACT_COLLECTED = "Contract feedback collected"
STATUS_AWAITING_SUBMISSION = "Awaiting submission"
STATUS_SUBMITTED_DOCUMENT = "Submitted document"

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000
DEFAULT_LOOKBACK_DAYS = 7

SIGNAL_TOPIC = "signals"
APPROVER_TOPIC = "approver"
DEAD_LETTER_SUFFIX = ".dead-letter"
