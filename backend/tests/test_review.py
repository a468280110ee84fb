import asyncio
from types import SimpleNamespace

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from fakes import FakeDeleter
from shelfwarden.core import review
from shelfwarden.core.errors import ConflictError, ExternalAdapterError, NotFoundError
from shelfwarden.core.review import CandidateFilters
from shelfwarden.core.stats import get_maintenance_stats
from shelfwarden.models.entities import (
    Base,
    MaintenanceCandidate,
    MaintenanceDeletionLog,
    MaintenanceRule,
    MaintenanceScan,
)
from shelfwarden.models.migrations import release_interrupted_deletions
from shelfwarden.models.schemas import MediaType, ReviewStatus

GB = 1024**3


async def seed_candidates(session_maker, *specs):
    """Create one rule and scan with a candidate per (key, status, file_size) tuple."""
    async with session_maker() as session:
        rule = MaintenanceRule(
            name="Old unwatched",
            media_type="MOVIE",
            criteria={"neverWatched": True},
        )
        session.add(rule)
        await session.flush()
        scan = MaintenanceScan(rule_id=rule.id, status="COMPLETED", items_scanned=10)
        session.add(scan)
        await session.flush()

        candidates = []
        for key, status, file_size in specs:
            candidate = MaintenanceCandidate(
                scan_id=scan.id,
                media_type="MOVIE",
                media_item_key=key,
                title=f"Movie {key}",
                file_size=file_size,
                matched_rule=rule.name,
                review_status=status,
            )
            session.add(candidate)
            candidates.append(candidate)
        await session.commit()
        return rule, scan, [c.id for c in candidates]


async def load_candidate(session_maker, candidate_id):
    async with session_maker() as session:
        return await session.get(MaintenanceCandidate, candidate_id)


@pytest.mark.anyio
async def test_approve_deletes_item_and_writes_audit_log(session_maker):
    _, _, (candidate_id,) = await seed_candidates(session_maker, ("100", "PENDING", 2 * GB))
    deleter = FakeDeleter()

    async with session_maker() as session:
        await review.approve_candidate(session, candidate_id, deleter, "admin", note="bye")

    candidate = await load_candidate(session_maker, candidate_id)
    assert deleter.deleted == ["100"]
    assert candidate.review_status == "DELETED"
    assert candidate.reviewed_by == "admin"
    assert candidate.review_note == "bye"
    assert candidate.deleted_at is not None
    assert candidate.deletion_error is None

    async with session_maker() as session:
        logs = (await session.scalars(select(MaintenanceDeletionLog))).all()
    assert len(logs) == 1
    assert logs[0].candidate_id == candidate_id
    assert logs[0].media_item_key == "100"
    assert logs[0].file_size == 2 * GB
    assert logs[0].deleted_by == "admin"
    assert logs[0].rule_name == "Old unwatched"


@pytest.mark.anyio
async def test_failed_deletion_leaves_candidate_approved_and_raises(session_maker):
    _, _, (candidate_id,) = await seed_candidates(session_maker, ("100", "PENDING", GB))
    deleter = FakeDeleter(failing_keys={"100"})

    async with session_maker() as session:
        with pytest.raises(ExternalAdapterError) as exc_info:
            await review.approve_candidate(session, candidate_id, deleter, "admin")

    assert "100" in exc_info.value.message
    candidate = await load_candidate(session_maker, candidate_id)
    assert candidate.review_status == "APPROVED"
    assert candidate.deleted_at is None
    assert candidate.deletion_error == exc_info.value.message

    async with session_maker() as session:
        assert (await session.scalars(select(MaintenanceDeletionLog))).all() == []


@pytest.mark.anyio
async def test_approving_approved_candidate_retries_deletion(session_maker):
    _, _, (candidate_id,) = await seed_candidates(session_maker, ("100", "PENDING", GB))
    failing = FakeDeleter(failing_keys={"100"})
    async with session_maker() as session:
        with pytest.raises(ExternalAdapterError):
            await review.approve_candidate(session, candidate_id, failing, "admin")

    working = FakeDeleter()
    async with session_maker() as session:
        await review.approve_candidate(session, candidate_id, working, "second-admin")

    candidate = await load_candidate(session_maker, candidate_id)
    assert working.deleted == ["100"]
    assert candidate.review_status == "DELETED"
    assert candidate.reviewed_by == "admin"
    assert candidate.deletion_error is None


@pytest.mark.anyio
@pytest.mark.parametrize("status", ["REJECTED", "DELETED"])
async def test_final_states_cannot_be_approved(session_maker, status):
    _, _, (candidate_id,) = await seed_candidates(session_maker, ("100", status, GB))
    deleter = FakeDeleter()

    async with session_maker() as session:
        with pytest.raises(ConflictError):
            await review.approve_candidate(session, candidate_id, deleter, "admin")

    assert deleter.deleted == []



class HeldDeleter(FakeDeleter):
    """Blocks inside ``delete`` until released."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def delete(self, media_item_key: str) -> None:
        self.entered.set()
        await self.release.wait()
        await super().delete(media_item_key)


@pytest.fixture
async def file_db(tmp_path):
    """File-backed database so concurrent sessions get their own connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/review.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield SimpleNamespace(
        engine=engine,
        session_maker=async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession),
    )
    await engine.dispose()


@pytest.mark.anyio
async def test_concurrent_approvals_delete_once(file_db):
    _, _, (candidate_id,) = await seed_candidates(file_db.session_maker, ("100", "PENDING", GB))
    deleter = HeldDeleter()

    async def approve(reviewer):
        async with file_db.session_maker() as session:
            return await review.approve_candidate(session, candidate_id, deleter, reviewer)

    first = asyncio.create_task(approve("admin"))
    await deleter.entered.wait()

    in_progress = await load_candidate(file_db.session_maker, candidate_id)
    assert in_progress.review_status == "APPROVED"
    assert in_progress.deletion_started_at is not None
    with pytest.raises(ConflictError):
        await approve("other-admin")

    deleter.release.set()
    await first

    candidate = await load_candidate(file_db.session_maker, candidate_id)
    assert deleter.deleted == ["100"]
    assert candidate.review_status == "DELETED"
    assert candidate.reviewed_by == "admin"
    assert candidate.deletion_started_at is None
    async with file_db.session_maker() as session:
        assert len((await session.scalars(select(MaintenanceDeletionLog))).all()) == 1


@pytest.mark.anyio
async def test_failed_deletion_releases_claim_for_retry(session_maker):
    _, _, (candidate_id,) = await seed_candidates(session_maker, ("100", "PENDING", GB))
    async with session_maker() as session:
        with pytest.raises(ExternalAdapterError):
            await review.approve_candidate(
                session, candidate_id, FakeDeleter(failing_keys={"100"}), "admin"
            )

    assert (await load_candidate(session_maker, candidate_id)).deletion_started_at is None


@pytest.mark.anyio
async def test_startup_releases_interrupted_deletion_claims(file_db):
    _, _, (stuck_id,) = await seed_candidates(file_db.session_maker, ("100", "APPROVED", GB))
    async with file_db.session_maker() as session:
        stuck = await session.get(MaintenanceCandidate, stuck_id)
        stuck.deletion_started_at = stuck.flagged_at
        await session.commit()

    async with file_db.engine.begin() as conn:
        released = await release_interrupted_deletions(conn)

    assert released == 1
    deleter = FakeDeleter()
    async with file_db.session_maker() as session:
        await review.approve_candidate(session, stuck_id, deleter, "admin")
    assert deleter.deleted == ["100"]



@pytest.mark.anyio
async def test_reject_only_from_pending(session_maker):
    _, _, (pending_id, approved_id) = await seed_candidates(
        session_maker, ("100", "PENDING", GB), ("200", "APPROVED", GB)
    )

    async with session_maker() as session:
        rejected = await review.reject_candidate(session, pending_id, "admin", note="keep it")
        with pytest.raises(ConflictError):
            await review.reject_candidate(session, approved_id, "admin")
        with pytest.raises(ConflictError):
            await review.reject_candidate(session, pending_id, "admin")

    assert rejected.review_status == "REJECTED"
    assert rejected.review_note == "keep it"
    assert rejected.reviewed_at is not None


@pytest.mark.anyio
async def test_unknown_candidate(session_maker):
    async with session_maker() as session:
        with pytest.raises(NotFoundError):
            await review.reject_candidate(session, 999, "admin")
        with pytest.raises(NotFoundError):
            await review.get_candidate_response(session, 999)


@pytest.mark.anyio
async def test_bulk_approve_reports_each_item(session_maker):
    _, _, (ok_id, failing_id, rejected_id) = await seed_candidates(
        session_maker,
        ("100", "PENDING", GB),
        ("200", "PENDING", GB),
        ("300", "REJECTED", GB),
    )
    deleter = FakeDeleter(failing_keys={"200"})

    async with session_maker() as session:
        response = await review.bulk_approve(
            session, [ok_id, failing_id, rejected_id, 404, ok_id], deleter, "admin"
        )

    assert response.succeeded == 1
    assert response.failed == 3
    by_id = {result.candidate_id: result for result in response.results}
    assert len(response.results) == 4
    assert by_id[ok_id].success and by_id[ok_id].review_status == ReviewStatus.DELETED
    assert by_id[failing_id].review_status == ReviewStatus.APPROVED
    assert "200" in by_id[failing_id].error
    assert by_id[rejected_id].review_status == ReviewStatus.REJECTED
    assert by_id[404].review_status is None
    assert deleter.deleted == ["100"]


@pytest.mark.anyio
async def test_bulk_reject(session_maker):
    _, _, (first, second) = await seed_candidates(
        session_maker, ("100", "PENDING", GB), ("200", "DELETED", GB)
    )

    async with session_maker() as session:
        response = await review.bulk_reject(session, [first, second], "admin")

    assert response.succeeded == 1
    assert response.failed == 1
    assert (await load_candidate(session_maker, first)).review_status == "REJECTED"
    assert (await load_candidate(session_maker, second)).review_status == "DELETED"


@pytest.mark.anyio
async def test_process_approved_deletions_handles_only_approved(session_maker):
    _, _, (pending_id, approved_id, failing_id) = await seed_candidates(
        session_maker,
        ("100", "PENDING", GB),
        ("200", "APPROVED", GB),
        ("300", "APPROVED", GB),
    )
    deleter = FakeDeleter(failing_keys={"300"})

    async with session_maker() as session:
        response = await review.process_approved_deletions(session, deleter)

    assert deleter.deleted == ["200"]
    assert response.succeeded == 1
    assert response.failed == 1
    assert (await load_candidate(session_maker, pending_id)).review_status == "PENDING"
    assert (await load_candidate(session_maker, approved_id)).review_status == "DELETED"
    failed = await load_candidate(session_maker, failing_id)
    assert failed.review_status == "APPROVED"
    assert failed.deletion_error

    async with session_maker() as session:
        log = await session.scalar(select(MaintenanceDeletionLog))
    assert log.deleted_by == "system:auto"


@pytest.mark.anyio
async def test_list_candidates_filters_and_paginates(session_maker):
    rule, scan, ids = await seed_candidates(
        session_maker,
        ("100", "PENDING", GB),
        ("200", "PENDING", GB),
        ("300", "REJECTED", GB),
    )

    async with session_maker() as session:
        pending = await review.list_candidates(
            session, CandidateFilters(review_status=ReviewStatus.PENDING), page=1, page_size=1
        )
        by_rule = await review.list_candidates(session, CandidateFilters(rule_id=rule.id))
        by_search = await review.list_candidates(session, CandidateFilters(search="movie 3"))
        episodes = await review.list_candidates(
            session, CandidateFilters(media_type=MediaType.EPISODE)
        )

    assert pending.total == 2
    assert pending.pages == 2
    assert len(pending.items) == 1
    assert by_rule.total == 3
    assert all(item.rule_name == "Old unwatched" for item in by_rule.items)
    assert all(item.rule_id == rule.id for item in by_rule.items)
    assert [item.media_item_key for item in by_search.items] == ["300"]
    assert episodes.total == 0
    assert episodes.pages == 0


@pytest.mark.anyio
async def test_list_deletions_newest_first(session_maker):
    _, _, ids = await seed_candidates(
        session_maker, ("100", "PENDING", GB), ("200", "PENDING", GB)
    )
    deleter = FakeDeleter()
    async with session_maker() as session:
        for candidate_id in ids:
            await review.approve_candidate(session, candidate_id, deleter, "admin")
        deletions = await review.list_deletions(session)

    assert deletions.total == 2
    assert [item.media_item_key for item in deletions.items] == ["200", "100"]


@pytest.mark.anyio
async def test_stats_summarize_candidates_and_savings(session_maker):
    await seed_candidates(
        session_maker,
        ("100", "PENDING", 2 * GB),
        ("200", "APPROVED", 3 * GB),
        ("300", "REJECTED", 5 * GB),
        ("400", "PENDING", None),
    )
    async with session_maker() as session:
        session.add(MaintenanceRule(name="Off", media_type="EPISODE", criteria={}, enabled=False))
        await session.commit()
        stats = await get_maintenance_stats(session)

    assert stats.rules.total == 2
    assert stats.rules.enabled == 1
    assert stats.rules.disabled == 1
    assert stats.candidates_by_status[ReviewStatus.PENDING] == 2
    assert stats.candidates_by_status[ReviewStatus.DELETED] == 0
    assert stats.total_candidates == 4
    assert stats.potential_space_savings == 5 * GB
    assert [scan.status for scan in stats.recent_scans] == ["COMPLETED"]
    assert stats.total_deletions == 0
