from datetime import datetime, timedelta, timezone

import pytest

from approvalflow.config import ApprovalFlowConfig, RetryConfig
from approvalflow.engine import OrchestrationEngine
from approvalflow.history import InMemoryHistoryStore


class RecordingNotifier:
    """Notifier that remembers each document and can fail on demand."""

    def __init__(self, failures=None):
        self.calls = []
        self.failures = list(failures or [])

    async def notify(self, instance_id, document):
        self.calls.append((instance_id, document))
        if self.failures:
            raise self.failures.pop(0)
        return True


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)

    def __call__(self):
        return self.now


@pytest.fixture
def offer_letter():
    return {
        "title": "Offer Letter",
        "creator": "alice",
        "applicationId": "A1",
        "createdDate": "2026-10-12T09:00:00+00:00",
    }


@pytest.fixture
def feedback():
    return {
        "InterviewFeedback": {"feedback": "great fit", "isPassed": True},
        "BackgroundCheckFeedback": {"feedback": "clear", "isPassed": True},
        "ContractFeedback": {"feedback": "terms ok", "isPassed": True},
    }


@pytest.fixture
def config():
    return ApprovalFlowConfig(retry=RetryConfig(max_attempts=3, backoff_base=0, jitter=0))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def store():
    return InMemoryHistoryStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(store, config, notifier, clock):
    return OrchestrationEngine(store, config=config, notifier=notifier, clock=clock)


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    """Keep tests away from any config.yaml or database in the environment."""
    monkeypatch.setenv("APPROVALFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("APPROVALFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("APPROVALFLOW_TRANSPORT", raising=False)
    monkeypatch.delenv("APPROVALFLOW_NOTIFIER", raising=False)


@pytest.fixture
def make_notifier():
    return RecordingNotifier


@pytest.fixture
def make_engine(config, clock):
    """Build an engine over an explicit store, as a restarted process would."""

    def _make(store, notifier=None, config_override=None):
        return OrchestrationEngine(
            store,
            config=config_override or config,
            notifier=notifier or RecordingNotifier(),
            clock=clock,
        )

    return _make
