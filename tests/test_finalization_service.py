# tests/test_finalization_service.py
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from factories import T0, completed_session, unique_participant

from proofmeet.core.exceptions import ChainPositionConflictError, NotReadyError
from proofmeet.db.session import AsyncSessionLocal, reset_schema
from proofmeet.models.attendance_session import AttendanceSession
from proofmeet.models.compliance_card import ComplianceCard
from proofmeet.schemas.attendance_session import SessionStatus
from proofmeet.services import finalization
from proofmeet.services.compliance_validator import INSUFFICIENT_ATTENDANCE
from proofmeet.services.finalization import finalize_pending_sessions, finalize_session
from proofmeet.services.integrity_chain import IntegrityChainBuilder


async def _persist(db, attendance_session: AttendanceSession) -> AttendanceSession:
    db.add(attendance_session)
    await db.commit()
    await db.refresh(attendance_session)
    return attendance_session


@pytest.mark.asyncio
async def test_finalize_creates_passed_card_and_marks_session():
    await reset_schema()

    async with AsyncSessionLocal() as db:
        participant = unique_participant()
        attendance_session = await _persist(db, completed_session(participant))
        session_id = attendance_session.id

        card = await finalize_session(db, attendance_session)

        assert card.session_id == session_id
        assert card.validation_status == "PASSED"
        assert card.violations == []
        assert card.chain_position == 1
        assert card.previous_card_hash is None
        assert card.card_number == "CC-2025-12345-001"
        assert card.total_duration_min == 60
        assert card.attendance_percent == 100.0
        assert card.engagement_level == "HIGH"
        assert card.confidence_level == "HIGH"
        assert card.is_tampered is False
        assert IntegrityChainBuilder.verify_content(card) == card.content_hash

        refreshed = await db.get(AttendanceSession, session_id, populate_existing=True)
        assert refreshed.card_generated is True
        assert refreshed.is_valid is True


@pytest.mark.asyncio
async def test_finalize_failed_verdict_is_a_normal_result():
    await reset_schema()

    async with AsyncSessionLocal() as db:
        attendance_session = await _persist(
            db, completed_session(unique_participant(), attended_minutes=30)
        )
        session_id = attendance_session.id

        card = await finalize_session(db, attendance_session)

        assert card.validation_status == "FAILED"
        assert card.confidence_level == "LOW"
        assert [v["type"] for v in card.violations] == [INSUFFICIENT_ATTENDANCE]
        assert card.violations[0]["severity"] == "CRITICAL"

        refreshed = await db.get(AttendanceSession, session_id, populate_existing=True)
        assert refreshed.card_generated is True
        assert refreshed.is_valid is False


@pytest.mark.asyncio
async def test_finalize_in_progress_session_raises_not_ready():
    await reset_schema()

    async with AsyncSessionLocal() as db:
        attendance_session = completed_session(unique_participant())
        attendance_session.leave_time = None
        attendance_session.status = SessionStatus.IN_PROGRESS.value
        attendance_session = await _persist(db, attendance_session)

        with pytest.raises(NotReadyError) as exc_info:
            await finalize_session(db, attendance_session)

        assert exc_info.value.retriable is True
        count = await db.execute(select(func.count(ComplianceCard.id)))
        assert count.scalar_one() == 0


@pytest.mark.asyncio
async def test_finalize_is_idempotent():
    await reset_schema()

    async with AsyncSessionLocal() as db:
        attendance_session = await _persist(db, completed_session(unique_participant()))

        first = await finalize_session(db, attendance_session)
        second = await finalize_session(db, attendance_session)

        assert second.id == first.id
        assert second.content_hash == first.content_hash

        count = await db.execute(select(func.count(ComplianceCard.id)))
        assert count.scalar_one() == 1


@pytest.mark.asyncio
async def test_concurrent_finalize_returns_the_winning_card(monkeypatch):
    """
    The loser of a finalize race does not see the winner's card before its
    insert; the unique constraint on session_id must resolve it.
    """
    await reset_schema()

    async with AsyncSessionLocal() as db:
        attendance_session = await _persist(db, completed_session(unique_participant()))
        winner = await finalize_session(db, attendance_session)
        winner_id = winner.id

        real_lookup = finalization.get_card_for_session
        calls = {"n": 0}

        async def stale_first_lookup(session, session_id):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return await real_lookup(session, session_id)

        monkeypatch.setattr(finalization, "get_card_for_session", stale_first_lookup)

        loser = await finalize_session(db, attendance_session)

        assert loser.id == winner_id
        count = await db.execute(select(func.count(ComplianceCard.id)))
        assert count.scalar_one() == 1


@pytest.mark.asyncio
async def test_chain_position_conflict_is_retried(monkeypatch):
    await reset_schema()

    async with AsyncSessionLocal() as db:
        participant = unique_participant()
        first_session = await _persist(db, completed_session(participant))
        second_session = await _persist(
            db, completed_session(participant, meeting_date=T0 + timedelta(days=1))
        )
        first = await finalize_session(db, first_session)
        # The rollback inside the retry expires loaded instances.
        first_hash = first.content_hash

        real_tail = finalization._chain_tail
        calls = {"n": 0}

        async def stale_first_tail(session, participant_id):
            calls["n"] += 1
            if calls["n"] == 1:
                return 0, None
            return await real_tail(session, participant_id)

        monkeypatch.setattr(finalization, "_chain_tail", stale_first_tail)

        second = await finalize_session(db, second_session)

        assert calls["n"] == 2
        assert second.chain_position == 2
        assert second.previous_card_hash == first_hash


@pytest.mark.asyncio
async def test_chain_position_conflict_gives_up_after_max_attempts(monkeypatch):
    await reset_schema()

    async with AsyncSessionLocal() as db:
        participant = unique_participant()
        first_session = await _persist(db, completed_session(participant))
        second_session = await _persist(
            db, completed_session(participant, meeting_date=T0 + timedelta(days=1))
        )
        await finalize_session(db, first_session)

        async def always_stale_tail(session, participant_id):
            return 0, None

        monkeypatch.setattr(finalization, "_chain_tail", always_stale_tail)

        with pytest.raises(ChainPositionConflictError) as exc_info:
            await finalize_session(db, second_session)

        assert exc_info.value.retriable is True


@pytest.mark.asyncio
async def test_cards_form_a_contiguous_chain_per_participant():
    await reset_schema()

    async with AsyncSessionLocal() as db:
        participant = unique_participant()
        other = unique_participant()

        cards = []
        for day in range(3):
            attendance_session = await _persist(
                db,
                completed_session(participant, meeting_date=T0 + timedelta(days=day)),
            )
            cards.append(await finalize_session(db, attendance_session))

        other_session = await _persist(db, completed_session(other))
        other_card = await finalize_session(db, other_session)

        assert [c.chain_position for c in cards] == [1, 2, 3]
        assert cards[0].previous_card_hash is None
        assert cards[1].previous_card_hash == cards[0].content_hash
        assert cards[2].previous_card_hash == cards[1].content_hash
        assert [c.card_number for c in cards] == [
            "CC-2025-12345-001",
            "CC-2025-12345-002",
            "CC-2025-12345-003",
        ]
        assert other_card.chain_position == 1
        assert IntegrityChainBuilder.replay(cards) == []


@pytest.mark.asyncio
async def test_session_without_any_verification_gets_warning():
    await reset_schema()

    async with AsyncSessionLocal() as db:
        attendance_session = await _persist(
            db,
            completed_session(unique_participant(), timeline=[], verification_method=None),
        )

        card = await finalize_session(db, attendance_session)

        types = [v["type"] for v in card.violations]
        assert "MISSING_VERIFICATION_DATA" in types
        # Warnings never fail a session on their own.
        assert card.validation_status == "PASSED"


@pytest.mark.asyncio
async def test_finalize_pending_sessions_skips_in_progress_and_finalized():
    await reset_schema()

    async with AsyncSessionLocal() as db:
        participant = unique_participant()

        already = await _persist(db, completed_session(participant))
        await finalize_session(db, already)

        await _persist(
            db, completed_session(participant, meeting_date=T0 + timedelta(days=1))
        )
        await _persist(
            db, completed_session(participant, meeting_date=T0 + timedelta(days=2))
        )

        in_progress = completed_session(participant, meeting_date=T0 + timedelta(days=3))
        in_progress.leave_time = None
        in_progress.status = SessionStatus.IN_PROGRESS.value
        await _persist(db, in_progress)

        summary = await finalize_pending_sessions(db)

        assert summary.checked == 2
        assert summary.finalized == 2
        assert summary.failed == 0
        assert [c.chain_position for c in summary.cards] == [2, 3]

        second_run = await finalize_pending_sessions(db)
        assert second_run.checked == 0


@pytest.mark.asyncio
async def test_fraud_assessment_is_stored_without_changing_the_verdict():
    await reset_schema()

    async with AsyncSessionLocal() as db:
        attendance_session = await _persist(
            db, completed_session(unique_participant(), attended_minutes=90)
        )

        card = await finalize_session(db, attendance_session)

        assert card.validation_status == "PASSED"
        assert card.fraud_recommendation == "REJECT"
        assert card.fraud_rules == ["IMPOSSIBLE_DURATION"]
        assert card.fraud_risk_score == 40
        assert len(card.fraud_reasons) == 1
        assert IntegrityChainBuilder.verify_content(card) == card.content_hash


@pytest.mark.asyncio
async def test_clean_session_has_no_fraud_findings():
    await reset_schema()

    async with AsyncSessionLocal() as db:
        attendance_session = await _persist(db, completed_session(unique_participant()))

        card = await finalize_session(db, attendance_session)

        assert card.fraud_risk_score == 0
        assert card.fraud_recommendation == "APPROVE"
        assert card.fraud_rules == []
