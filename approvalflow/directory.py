"""Process-wide directory of instance summaries."""

from __future__ import annotations

import base64
import binascii
import json
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from .config import DirectoryConfig
from .contracts import InstancePage, InstanceSummary, RuntimeState
from .exceptions import InvalidInputError, InvalidPageTokenError

DEFAULT_STATUSES = frozenset({RuntimeState.PENDING, RuntimeState.RUNNING})


def encode_page_token(summary: InstanceSummary) -> str:
    raw = json.dumps({"c": summary.created_at.isoformat(), "i": summary.instance_id})
    return base64.urlsafe_b64encode(raw.encode()).decode()


def decode_page_token(token: str) -> tuple[datetime, str]:
    try:
        data = json.loads(base64.urlsafe_b64decode(token.encode()))
        created_at, instance_id = datetime.fromisoformat(data["c"]), data["i"]
    except (binascii.Error, ValueError, KeyError, TypeError) as exc:
        raise InvalidPageTokenError(f"Invalid page token: {token!r}") from exc
    # summaries carry aware timestamps; anything else cannot be compared
    if created_at.tzinfo is None or not isinstance(instance_id, str):
        raise InvalidPageTokenError(f"Invalid page token: {token!r}")
    return created_at, instance_id


class _Shard:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.summaries: Dict[str, InstanceSummary] = {}


class InstanceDirectory:
    """Registry of instance summaries, queryable by state and creation time.

    The engine publishes a fresh summary after every change; callers only
    read. Summaries are spread over lock-striped shards so writers for
    different instances rarely contend. Listing is keyset-paginated on
    ``(created_at, instance_id)``, so pages stay stable while new instances
    are added.
    """

    def __init__(self, config: Optional[DirectoryConfig] = None, shards: int = 16) -> None:
        self._config = config or DirectoryConfig()
        self._shards = [_Shard() for _ in range(shards)]

    def _shard(self, instance_id: str) -> _Shard:
        return self._shards[hash(instance_id) % len(self._shards)]

    def publish(self, summary: InstanceSummary) -> None:
        shard = self._shard(summary.instance_id)
        with shard.lock:
            shard.summaries[summary.instance_id] = summary

    def get(self, instance_id: str) -> Optional[InstanceSummary]:
        shard = self._shard(instance_id)
        with shard.lock:
            return shard.summaries.get(instance_id)

    def _snapshot(self) -> List[InstanceSummary]:
        items: List[InstanceSummary] = []
        for shard in self._shards:
            with shard.lock:
                items.extend(shard.summaries.values())
        return items

    def list_instances(
        self,
        statuses: Optional[Iterable[RuntimeState]] = None,
        created_after: Optional[datetime] = None,
        page_size: Optional[int] = None,
        page_token: Optional[str] = None,
    ) -> InstancePage:
        """Return one page of summaries matching the filters.

        Args:
            statuses: Runtime states to include. Defaults to Pending and Running.
            created_after: Inclusive lower bound on creation time. Defaults to
                the configured lookback window (7 days).
            page_size: Items per page, between 1 and the configured cap.
            page_token: Token returned by the previous page.
        """
        wanted = DEFAULT_STATUSES if statuses is None else frozenset(statuses)
        if created_after is None:
            created_after = datetime.now(timezone.utc) - timedelta(
                days=self._config.lookback_days
            )
        elif created_after.tzinfo is None:
            created_after = created_after.replace(tzinfo=timezone.utc)
        size = self._config.default_page_size if page_size is None else page_size
        if not 1 <= size <= self._config.max_page_size:
            raise InvalidInputError(
                f"page_size must be between 1 and {self._config.max_page_size}"
            )

        matches = sorted(
            (
                s
                for s in self._snapshot()
                if s.runtime_state in wanted and s.created_at >= created_after
            ),
            key=lambda s: (s.created_at, s.instance_id),
        )
        if page_token:
            after = decode_page_token(page_token)
            matches = [s for s in matches if (s.created_at, s.instance_id) > after]

        page = matches[:size]
        next_token = encode_page_token(page[-1]) if len(matches) > size else None
        return InstancePage(items=page, next_page_token=next_token)
