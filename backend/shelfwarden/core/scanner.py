"""Scan executor: runs a rule's criteria against the catalog and records candidates."""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shelfwarden.config import Settings, get_settings
from shelfwarden.core.adapters import CatalogAdapter
from shelfwarden.core.criteria import parse_criteria
from shelfwarden.core.errors import ConflictError, NotFoundError
from shelfwarden.core.evaluator import evaluate, parse_datetime
from shelfwarden.core.scan_state import ScanStateManager, scan_state_manager
from shelfwarden.models.entities import MaintenanceCandidate, MaintenanceRule, MaintenanceScan
from shelfwarden.models.schemas import (
    ACTIVE_SCAN_STATUSES,
    ActionType,
    ConditionGroup,
    MediaType,
    ReviewStatus,
    ScanDetailResponse,
    ScanStatusType,
)

logger = logging.getLogger(__name__)

AUTO_REVIEWER = "system:auto"

_ACTIVE_STATUS_VALUES = [status.value for status in ACTIVE_SCAN_STATUSES]


def _evaluate_chunk(
    criteria: ConditionGroup, items: list[dict[str, Any]], now: datetime
) -> list[dict[str, Any]]:
    """Worker-side filter; returns the matching items in input order."""
    return [item for item in items if evaluate(criteria, item, now)]


def _chunks(items: list[dict[str, Any]], size: int) -> list[list[dict[str, Any]]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def _build_candidate(
    scan_id: int,
    rule: MaintenanceRule,
    item: dict[str, Any],
    now: datetime,
) -> MaintenanceCandidate:
    key = str(item["key"])
    candidate = MaintenanceCandidate(
        scan_id=scan_id,
        media_type=rule.media_type,
        media_item_key=key,
        title=item.get("title") or key,
        year=item.get("year"),
        file_size=item.get("fileSize"),
        play_count=item.get("playCount") or 0,
        last_watched_at=parse_datetime(item.get("lastWatchedAt")),
        added_at=parse_datetime(item.get("addedAt")),
        matched_rule=rule.name,
        review_status=ReviewStatus.PENDING.value,
        flagged_at=now,
    )
    if rule.action_type == ActionType.AUTO_DELETE.value:
        candidate.review_status = ReviewStatus.APPROVED.value
        candidate.reviewed_at = now
        candidate.reviewed_by = AUTO_REVIEWER
    return candidate


class ScanExecutor:
    """Drives scans through PENDING -> RUNNING -> COMPLETED/FAILED/CANCELLED."""

    def __init__(
        self,
        catalog: CatalogAdapter,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        state: Optional[ScanStateManager] = None,
    ):
        """
        Initialize the scan executor.

        Args:
            catalog: Adapter used to page through catalog items
            session_factory: Factory for independent database sessions
            settings: Tuning values (page timeout, worker pool size, chunk size)
            state: In-process progress tracker (defaults to the module singleton)
        """
        self.catalog = catalog
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.state = state or scan_state_manager
        self._trigger_lock = asyncio.Lock()
        self._pool: Optional[ThreadPoolExecutor] = None

    def _get_pool(self) -> ThreadPoolExecutor:
        if self._pool is None:
            self._pool = ThreadPoolExecutor(
                max_workers=max(1, self.settings.scan_worker_count),
                thread_name_prefix="scan-eval",
            )
        return self._pool

    def shutdown(self) -> None:
        """Release the evaluation worker pool."""
        if self._pool is not None:
            self._pool.shutdown(wait=False)
            self._pool = None

    async def start_scan(self, rule_id: int) -> MaintenanceScan:
        """
        Create a PENDING scan for ``rule_id``.

        Raises:
            NotFoundError: the rule does not exist
            ConflictError: the rule is disabled or already has an active scan
        """
        async with self._trigger_lock:
            async with self.session_factory() as db:
                rule = await db.get(MaintenanceRule, rule_id)
                if rule is None:
                    raise NotFoundError(f"Rule {rule_id} not found")
                if not rule.enabled:
                    raise ConflictError(f"Rule {rule_id} is disabled")

                active_id = await db.scalar(
                    select(MaintenanceScan.id).where(
                        MaintenanceScan.rule_id == rule_id,
                        MaintenanceScan.status.in_(_ACTIVE_STATUS_VALUES),
                    )
                )
                if active_id is not None:
                    raise ConflictError(
                        f"Scan {active_id} is already active for rule {rule_id}"
                    )

                scan = MaintenanceScan(rule_id=rule_id, status=ScanStatusType.PENDING.value)
                db.add(scan)
                try:
                    await db.commit()
                except IntegrityError as exc:
                    # Another process won the partial unique index race.
                    await db.rollback()
                    raise ConflictError(
                        f"A scan is already active for rule {rule_id}"
                    ) from exc
                await db.refresh(scan)

        logger.info("Created scan %s for rule %s", scan.id, rule_id)
        return scan

    async def trigger_scan(self, rule_id: int) -> MaintenanceScan:
        """Create and run a scan to completion; entry point for schedulers."""
        scan = await self.start_scan(rule_id)
        await self.execute_scan(scan.id)
        async with self.session_factory() as db:
            return await db.get(MaintenanceScan, scan.id)

    async def execute_scan(self, scan_id: int) -> None:
        """Run a PENDING scan. Failures are recorded on the scan row, never raised."""
        async with self.session_factory() as db:
            scan = await db.get(MaintenanceScan, scan_id)
            if scan is None:
                logger.warning("Scan %s vanished before execution", scan_id)
                return
            rule_id = scan.rule_id

            if await self.state.register(rule_id, scan_id) is None:
                await self._fail_unregistered(db, scan_id, rule_id)
                return

            try:
                started_at = datetime.now(timezone.utc)
                result = await db.execute(
                    update(MaintenanceScan)
                    .where(
                        MaintenanceScan.id == scan_id,
                        MaintenanceScan.status == ScanStatusType.PENDING.value,
                    )
                    .values(status=ScanStatusType.RUNNING.value, started_at=started_at)
                )
                await db.commit()
                if result.rowcount != 1:
                    logger.info("Scan %s is no longer PENDING; skipping", scan_id)
                    return

                logger.info("Scan %s started for rule %s", scan_id, rule_id)
                try:
                    status = await self._run(db, scan_id, rule_id)
                except Exception as exc:
                    await db.rollback()
                    message = str(exc) or type(exc).__name__
                    if isinstance(exc, asyncio.TimeoutError):
                        message = (
                            "Catalog request timed out after "
                            f"{self.settings.catalog_timeout_seconds:g}s"
                        )
                    logger.error("Scan %s failed: %s", scan_id, message)
                    await self._finalize(db, scan_id, rule_id, ScanStatusType.FAILED, message)
                    return

                if status is None:
                    logger.warning("Scan %s was finished by another process; stopping", scan_id)
                    return
                await self._finalize(db, scan_id, rule_id, status)
            finally:
                await self.state.finish(rule_id)

    async def _fail_unregistered(self, db: AsyncSession, scan_id: int, rule_id: int) -> None:
        message = f"Another scan of rule {rule_id} is still running in this process"
        result = await db.execute(
            update(MaintenanceScan)
            .where(
                MaintenanceScan.id == scan_id,
                MaintenanceScan.status == ScanStatusType.PENDING.value,
            )
            .values(
                status=ScanStatusType.FAILED.value,
                completed_at=datetime.now(timezone.utc),
                error_message=message,
            )
        )
        await db.commit()
        if result.rowcount == 1:
            logger.warning("Scan %s failed: %s", scan_id, message)

    async def _run(
        self, db: AsyncSession, scan_id: int, rule_id: int
    ) -> Optional[ScanStatusType]:
        """Page through the catalog; None means the row left RUNNING under us."""
        rule = await db.get(MaintenanceRule, rule_id)
        if rule is None:
            raise NotFoundError(f"Rule {rule_id} not found")
        criteria = parse_criteria(rule.criteria)
        media_type = MediaType(rule.media_type)
        timeout = self.settings.catalog_timeout_seconds

        page_token: Optional[str] = None
        pages = items_scanned = items_flagged = 0
        while True:
            row = (
                await db.execute(
                    select(MaintenanceScan.status, MaintenanceScan.cancel_requested).where(
                        MaintenanceScan.id == scan_id
                    )
                )
            ).one_or_none()
            if row is None or row.status != ScanStatusType.RUNNING.value:
                return None
            if row.cancel_requested or await self.state.is_cancel_requested(rule_id):
                logger.info("Scan %s cancelled after %s page(s)", scan_id, pages)
                return ScanStatusType.CANCELLED

            page = await asyncio.wait_for(
                self.catalog.list_items(media_type, page_token), timeout=timeout
            )
            now = datetime.now(timezone.utc)
            matches = await self._evaluate_items(criteria, page.items, now)

            items_scanned += len(page.items)
            items_flagged += len(matches)
            # Counters and candidates land only while the row is still RUNNING.
            result = await db.execute(
                update(MaintenanceScan)
                .where(
                    MaintenanceScan.id == scan_id,
                    MaintenanceScan.status == ScanStatusType.RUNNING.value,
                )
                .values(items_scanned=items_scanned, items_flagged=items_flagged)
            )
            if result.rowcount != 1:
                await db.rollback()
                return None
            db.add_all(_build_candidate(scan_id, rule, item, now) for item in matches)
            await db.commit()

            pages += 1
            await self.state.update_progress(
                rule_id,
                pages_fetched=pages,
                items_scanned=items_scanned,
                items_flagged=items_flagged,
            )
            logger.info(
                "Scan %s page %s: %s item(s), %s flagged",
                scan_id,
                pages,
                len(page.items),
                len(matches),
            )

            page_token = page.next_page_token
            if not page_token:
                return ScanStatusType.COMPLETED

    async def _evaluate_items(
        self,
        criteria: ConditionGroup,
        items: list[dict[str, Any]],
        now: datetime,
    ) -> list[dict[str, Any]]:
        if not items:
            return []
        loop = asyncio.get_running_loop()
        pool = self._get_pool()
        chunk_size = max(1, self.settings.scan_eval_chunk_size)
        results = await asyncio.gather(
            *(
                loop.run_in_executor(pool, _evaluate_chunk, criteria, chunk, now)
                for chunk in _chunks(items, chunk_size)
            )
        )
        matches: list[dict[str, Any]] = []
        for chunk_matches in results:
            matches.extend(chunk_matches)
        return matches

    async def _finalize(
        self,
        db: AsyncSession,
        scan_id: int,
        rule_id: int,
        status: ScanStatusType,
        error_message: Optional[str] = None,
    ) -> None:
        completed_at = datetime.now(timezone.utc)
        result = await db.execute(
            update(MaintenanceScan)
            .where(
                MaintenanceScan.id == scan_id,
                MaintenanceScan.status == ScanStatusType.RUNNING.value,
            )
            .values(status=status.value, completed_at=completed_at, error_message=error_message)
        )
        if result.rowcount != 1:
            await db.rollback()
            logger.warning(
                "Scan %s left RUNNING before it could be marked %s", scan_id, status.value
            )
            return
        await db.execute(
            update(MaintenanceRule)
            .where(MaintenanceRule.id == rule_id)
            .values(last_run_at=completed_at)
        )
        await db.commit()
        logger.info("Scan %s finished with status %s", scan_id, status.value)

    async def cancel_scan(self, scan_id: int) -> MaintenanceScan:
        """
        Cancel a PENDING scan or request cancellation of a RUNNING one.

        A PENDING scan is cancelled immediately. A RUNNING scan keeps its
        status and gets ``cancel_requested`` set; whichever process runs it
        stops before its next catalog page and marks it CANCELLED.

        Raises:
            NotFoundError: the scan does not exist
            ConflictError: the scan already finished
        """
        async with self.session_factory() as db:
            scan = await db.get(MaintenanceScan, scan_id)
            if scan is None:
                raise NotFoundError(f"Scan {scan_id} not found")

            if scan.status == ScanStatusType.PENDING.value:
                result = await db.execute(
                    update(MaintenanceScan)
                    .where(
                        MaintenanceScan.id == scan_id,
                        MaintenanceScan.status == ScanStatusType.PENDING.value,
                    )
                    .values(
                        status=ScanStatusType.CANCELLED.value,
                        completed_at=datetime.now(timezone.utc),
                    )
                )
                await db.commit()
                await db.refresh(scan)
                if result.rowcount == 1:
                    logger.info("Scan %s cancelled", scan_id)
                    return scan

            if scan.status != ScanStatusType.RUNNING.value:
                raise ConflictError(f"Scan {scan_id} is already {scan.status}")

            result = await db.execute(
                update(MaintenanceScan)
                .where(
                    MaintenanceScan.id == scan_id,
                    MaintenanceScan.status == ScanStatusType.RUNNING.value,
                )
                .values(cancel_requested=True)
            )
            await db.commit()
            await db.refresh(scan)
            if result.rowcount != 1:
                raise ConflictError(f"Scan {scan_id} finished before it could be cancelled")

            progress = await self.state.get_progress(scan.rule_id)
            if progress.is_running and progress.scan_id == scan_id:
                await self.state.request_cancel(scan.rule_id)
            logger.info("Cancellation requested for scan %s", scan_id)
            return scan


async def list_scans(db: AsyncSession, rule_id: int, limit: int = 50) -> list[MaintenanceScan]:
    """Scans of one rule, newest first."""
    if await db.get(MaintenanceRule, rule_id) is None:
        raise NotFoundError(f"Rule {rule_id} not found")
    result = await db.execute(
        select(MaintenanceScan)
        .where(MaintenanceScan.rule_id == rule_id)
        .order_by(MaintenanceScan.created_at.desc(), MaintenanceScan.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_scan(
    db: AsyncSession,
    scan_id: int,
    state: Optional[ScanStateManager] = None,
) -> ScanDetailResponse:
    """Persisted scan plus live progress when it is running in this process."""
    scan = await db.get(MaintenanceScan, scan_id)
    if scan is None:
        raise NotFoundError(f"Scan {scan_id} not found")
    detail = ScanDetailResponse.model_validate(scan)
    if scan.status in _ACTIVE_STATUS_VALUES:
        progress = await (state or scan_state_manager).get_progress(scan.rule_id)
        if progress.scan_id == scan_id:
            detail.progress = progress
    return detail
