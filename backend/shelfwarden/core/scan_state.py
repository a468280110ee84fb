"""Centralized scan state management."""

import asyncio
from datetime import datetime, timezone

from shelfwarden.models.schemas import ScanProgress


class ScanStateManager:
    """Owns in-process progress and cancellation state for rule scans."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._progress_by_rule: dict[int, ScanProgress] = {}
        self._cancel_requested_by_rule: dict[int, bool] = {}

    def _get_or_create_progress(self, rule_id: int) -> ScanProgress:
        if rule_id not in self._progress_by_rule:
            self._progress_by_rule[rule_id] = ScanProgress(is_running=False)
        return self._progress_by_rule[rule_id]

    async def get_progress(self, rule_id: int) -> ScanProgress:
        """Return a safe copy of the current scan progress."""
        async with self._lock:
            return self._get_or_create_progress(rule_id).model_copy(deep=True)

    async def register(self, rule_id: int, scan_id: int) -> ScanProgress | None:
        """Transition to running state, returning None if already running."""
        async with self._lock:
            progress = self._get_or_create_progress(rule_id)
            if progress.is_running:
                return None

            self._cancel_requested_by_rule[rule_id] = False
            self._progress_by_rule[rule_id] = ScanProgress(
                is_running=True,
                scan_id=scan_id,
                started_at=datetime.now(timezone.utc),
            )
            return self._progress_by_rule[rule_id].model_copy(deep=True)

    async def request_cancel(self, rule_id: int) -> ScanProgress | None:
        """Request cancellation for a running scan."""
        async with self._lock:
            progress = self._get_or_create_progress(rule_id)
            if not progress.is_running:
                return None
            self._cancel_requested_by_rule[rule_id] = True
            progress.cancel_requested = True
            return progress.model_copy(deep=True)

    async def is_cancel_requested(self, rule_id: int) -> bool:
        """Check whether cancellation has been requested."""
        async with self._lock:
            return self._cancel_requested_by_rule.get(rule_id, False)

    async def update_progress(self, rule_id: int, **kwargs) -> ScanProgress:
        """Update progress fields and return a copy of the new state."""
        async with self._lock:
            progress = self._get_or_create_progress(rule_id)
            current = progress.model_dump()
            current.update(kwargs)
            self._progress_by_rule[rule_id] = ScanProgress(**current)
            return self._progress_by_rule[rule_id].model_copy(deep=True)

    async def finish(self, rule_id: int) -> ScanProgress:
        """Transition to not running while keeping the final counters."""
        async with self._lock:
            progress = self._get_or_create_progress(rule_id)
            self._cancel_requested_by_rule[rule_id] = False
            progress.is_running = False
            progress.cancel_requested = False
            return progress.model_copy(deep=True)

    async def reset(self) -> None:
        """Reset state for tests."""
        async with self._lock:
            self._cancel_requested_by_rule = {}
            self._progress_by_rule = {}


scan_state_manager = ScanStateManager()
