# proofmeet/services/finalization.py
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from proofmeet.core.config import get_settings
from proofmeet.core.exceptions import (
    ChainPositionConflictError,
    DuplicateCardError,
    NotReadyError,
    ProofMeetError,
)
from proofmeet.models.attendance_session import AttendanceSession
from proofmeet.models.compliance_card import ComplianceCard
from proofmeet.schemas.attendance_session import SessionStatus
from proofmeet.schemas.compliance_card import ComplianceCardRead, FinalizationRunSummary
from proofmeet.schemas.evaluation import (
    ComplianceVerdict,
    DurationBreakdown,
    EngagementAnalysis,
    Severity,
    ValidationStatus,
)
from proofmeet.services.attendance_tracking import get_session_or_raise
from proofmeet.services.compliance_validator import ComplianceValidator
from proofmeet.services.duration_calculator import DurationCalculator
from proofmeet.services.engagement_scorer import EngagementScorer, get_engagement_scorer
from proofmeet.services.event_normalizer import EventLogNormalizer
from proofmeet.services.fraud_detection import FraudRiskAssessor
from proofmeet.services.integrity_chain import CardHashFields, IntegrityChainBuilder
from proofmeet.utils.timestamps import ensure_utc

logger = logging.getLogger(__name__)


def build_card_number(case_number: Optional[str], meeting_date: datetime, chain_position: int) -> str:
    """
    Format: CC-YYYY-CASENUM-SEQ, e.g. CC-2025-12345-001.
    """
    digits = re.sub(r"[^0-9]", "", case_number or "")[-5:].rjust(5, "0")
    return f"CC-{meeting_date.year}-{digits}-{chain_position:03d}"


async def get_card_for_session(db: AsyncSession, session_id: int) -> Optional[ComplianceCard]:
    result = await db.execute(
        select(ComplianceCard).where(ComplianceCard.session_id == session_id)
    )
    return result.scalar_one_or_none()


async def _chain_tail(db: AsyncSession, participant_id: str) -> Tuple[int, Optional[str]]:
    """
    Number of cards already in the participant's chain and the content hash
    of the last one.
    """
    count_result = await db.execute(
        select(func.count(ComplianceCard.id)).where(
            ComplianceCard.participant_id == participant_id
        )
    )
    prior_count = int(count_result.scalar_one())

    last_result = await db.execute(
        select(ComplianceCard.content_hash)
        .where(ComplianceCard.participant_id == participant_id)
        .order_by(ComplianceCard.chain_position.desc())
        .limit(1)
    )
    previous_hash = last_result.scalar_one_or_none()
    return prior_count, previous_hash


async def finalize_session(
    db: AsyncSession,
    attendance_session: AttendanceSession,
    scorer: Optional[EngagementScorer] = None,
) -> ComplianceCard:
    """
    Produce the compliance card for a completed session.

    Steps
    -----
    1) Require the authoritative leave time (else NotReadyError, retriable).
    2) Durations and engagement analysis.
    3) Violations and verdict, plus an informational fraud-risk assessment
       that never changes the verdict.
    4) If a card already exists for the session, return it unchanged.
    5) Otherwise link the new card into the participant's chain and persist.

    A unique-constraint hit on session_id during step 5 means a concurrent
    call won; its card is returned. A hit on (participant, position) means a
    card of another session took the slot; the link is recomputed and the
    insert retried up to FINALIZATION_MAX_ATTEMPTS times.
    """
    session_id = attendance_session.id

    # 1) Readiness
    if attendance_session.leave_time is None:
        raise NotReadyError(session_id, "no authoritative leave time yet")
    if attendance_session.status != SessionStatus.COMPLETED.value:
        raise NotReadyError(session_id, f"status is {attendance_session.status}")

    # Snapshot everything needed later; a rollback expires the ORM instance.
    participant_id = attendance_session.participant_id
    participant_name = attendance_session.participant_name
    case_number = attendance_session.case_number
    meeting_id = attendance_session.meeting_id
    meeting_name = attendance_session.meeting_name
    meeting_date = ensure_utc(attendance_session.meeting_date)
    meeting_duration = attendance_session.meeting_duration_minutes
    join_time = ensure_utc(attendance_session.join_time)
    leave_time = ensure_utc(attendance_session.leave_time)
    verification_method = attendance_session.verification_method
    raw_timeline = attendance_session.activity_timeline

    # 2) Durations + engagement
    timeline = EventLogNormalizer.normalize(raw_timeline)
    durations = DurationCalculator.calculate(
        join_time=join_time,
        leave_time=leave_time,
        timeline=timeline.events,
        meeting_duration_minutes=meeting_duration,
    )
    engagement = (scorer or get_engagement_scorer()).analyze(
        timeline.events,
        durations.total_duration_min,
    )

    # 3) Verdict
    verdict = ComplianceValidator.evaluate(
        durations,
        engagement,
        has_verification_data=bool(verification_method) or bool(timeline.events),
    )

    # 4) Idempotent path
    existing = await get_card_for_session(db, session_id)
    if existing is not None:
        logger.info(
            "Card %s already exists for session %s, nothing to do",
            existing.card_number,
            session_id,
        )
        return existing

    fraud = FraudRiskAssessor.assess(
        durations,
        engagement,
        timeline.events,
        scheduled_minutes=meeting_duration,
        verification_method=verification_method,
    )
    confidence = ComplianceValidator.confidence_level(durations, verdict.status)
    violations = [v.model_dump(mode="json") for v in verdict.violations]

    # 5) Create + chain. The hash covers the verdict the card ends up with.
    max_attempts = get_settings().FINALIZATION_MAX_ATTEMPTS
    contested_position = 0

    for attempt in range(1, max_attempts + 1):
        prior_count, previous_hash = await _chain_tail(db, participant_id)
        card_number = build_card_number(case_number, meeting_date, prior_count + 1)
        hash_fields = CardHashFields(
            card_number=card_number,
            session_id=session_id,
            participant_id=participant_id,
            participant_name=participant_name,
            case_id=case_number,
            meeting_id=meeting_id,
            meeting_name=meeting_name,
            meeting_date=meeting_date,
            meeting_duration_minutes=meeting_duration,
            join_time=join_time,
            leave_time=leave_time,
            total_duration_min=durations.total_duration_min,
            active_duration_min=durations.active_duration_min,
            idle_duration_min=durations.idle_duration_min,
            attendance_percent=durations.attendance_percent,
            engagement_score=engagement.score,
            engagement_level=engagement.level.value,
            engagement_recommendation=engagement.recommendation.value,
            engagement_flags=list(engagement.flags),
            validation_status=verdict.status.value,
            violations=violations,
            confidence_level=confidence.value,
            fraud_risk_score=fraud.risk_score,
            fraud_recommendation=fraud.recommendation.value,
            fraud_rules=fraud.rules,
            fraud_reasons=fraud.reasons,
        )
        link = IntegrityChainBuilder.link(hash_fields, previous_hash, prior_count)

        card = ComplianceCard(
            card_number=card_number,
            session_id=session_id,
            participant_id=participant_id,
            participant_name=participant_name,
            case_number=case_number,
            meeting_id=meeting_id,
            meeting_name=meeting_name,
            meeting_date=meeting_date,
            meeting_duration_minutes=meeting_duration,
            join_time=join_time,
            leave_time=leave_time,
            total_duration_min=durations.total_duration_min,
            active_duration_min=durations.active_duration_min,
            idle_duration_min=durations.idle_duration_min,
            attendance_percent=durations.attendance_percent,
            engagement_score=engagement.score,
            engagement_level=engagement.level.value,
            engagement_recommendation=engagement.recommendation.value,
            engagement_flags=list(engagement.flags),
            validation_status=ValidationStatus.PENDING.value,
            violations=[],
            confidence_level=confidence.value,
            fraud_risk_score=fraud.risk_score,
            fraud_recommendation=fraud.recommendation.value,
            fraud_rules=fraud.rules,
            fraud_reasons=fraud.reasons,
            content_hash=link.content_hash,
            chain_hash=link.chain_hash,
            previous_card_hash=link.previous_card_hash,
            chain_position=link.chain_position,
            is_tampered=False,
        )

        try:
            await _insert_card(db, card, session_id, participant_id, link.chain_position)
        except DuplicateCardError:
            winner = await get_card_for_session(db, session_id)
            if winner is None:
                raise
            logger.info(
                "Concurrent finalization already created card %s for session %s",
                winner.card_number,
                session_id,
            )
            return winner
        except ChainPositionConflictError as exc:
            contested_position = exc.chain_position
            logger.info(
                "Chain position %s for participant %s taken (attempt %d/%d), retrying",
                link.chain_position,
                participant_id,
                attempt,
                max_attempts,
            )
            continue

        return await _apply_verdict(db, card, session_id, durations, engagement, verdict)

    raise ChainPositionConflictError(participant_id, contested_position)


async def _insert_card(
    db: AsyncSession,
    card: ComplianceCard,
    session_id: int,
    participant_id: str,
    chain_position: int,
) -> None:
    """
    Atomic create-if-absent: the unique constraints decide the winner.
    """
    db.add(card)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        if await get_card_for_session(db, session_id) is not None:
            raise DuplicateCardError(session_id)
        raise ChainPositionConflictError(participant_id, chain_position)


async def _apply_verdict(
    db: AsyncSession,
    card: ComplianceCard,
    session_id: int,
    durations: DurationBreakdown,
    engagement: EngagementAnalysis,
    verdict: ComplianceVerdict,
) -> ComplianceCard:
    """
    PENDING -> PASSED/FAILED, once, in the same transaction as the insert.
    """
    card.validation_status = verdict.status.value
    card.violations = [v.model_dump(mode="json") for v in verdict.violations]

    await db.execute(
        update(AttendanceSession)
        .where(AttendanceSession.id == session_id)
        .values(
            card_generated=True,
            is_valid=verdict.status is ValidationStatus.PASSED,
        )
    )
    await db.commit()
    await db.refresh(card)

    logger.info(
        "Card %s generated for session %s: %s (attendance %.1f%%, engagement %d/%s, fraud risk %d/%s)",
        card.card_number,
        session_id,
        card.validation_status,
        durations.attendance_percent,
        engagement.score,
        engagement.level.value,
        card.fraud_risk_score,
        card.fraud_recommendation,
    )
    if verdict.status is ValidationStatus.FAILED:
        critical = [v.type for v in verdict.violations if v.severity is Severity.CRITICAL]
        logger.warning("Card %s FAILED validation: %s", card.card_number, ", ".join(critical))

    return card


async def finalize_session_by_id(db: AsyncSession, session_id: int) -> ComplianceCard:
    attendance_session = await get_session_or_raise(db, session_id)
    return await finalize_session(db, attendance_session)


async def finalize_pending_sessions(db: AsyncSession) -> FinalizationRunSummary:
    """
    Finalize every COMPLETED session that has no card yet.

    Sessions still IN_PROGRESS are left alone: completing them is the
    provider callback's job. Per-session failures are logged and counted,
    and the session stays eligible for the next run.
    """
    stmt = (
        select(AttendanceSession.id)
        .where(
            AttendanceSession.status == SessionStatus.COMPLETED.value,
            AttendanceSession.card_generated.is_(False),
        )
        .order_by(AttendanceSession.leave_time, AttendanceSession.id)
    )
    result = await db.execute(stmt)
    session_ids: List[int] = list(result.scalars().all())

    finalized = 0
    failed = 0
    cards: List[ComplianceCardRead] = []

    for session_id in session_ids:
        try:
            card = await finalize_session_by_id(db, session_id)
        except ProofMeetError as exc:
            failed += 1
            logger.error("Finalization failed for session %s: %s", session_id, exc, exc_info=True)
            continue

        finalized += 1
        cards.append(ComplianceCardRead.model_validate(card))

    logger.info(
        "Finalization run: %d checked, %d finalized, %d failed",
        len(session_ids),
        finalized,
        failed,
    )
    return FinalizationRunSummary(
        checked=len(session_ids),
        finalized=finalized,
        failed=failed,
        cards=cards,
    )
