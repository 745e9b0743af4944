# proofmeet/services/participant_summary.py
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from proofmeet.schemas.compliance_card import ParticipantComplianceSummary
from proofmeet.schemas.evaluation import ValidationStatus
from proofmeet.services.card_verification import list_participant_cards


async def compute_participant_summary(
    db: AsyncSession,
    participant_id: str,
) -> ParticipantComplianceSummary:
    """
    Aggregate a participant's court cards.

    Steps
    -----
    1) Fetch every card of the participant in chain order.
    2) Count PASSED / FAILED / tampered cards.
    3) Compute:
        - total_hours_completed = sum(total_duration_min) / 60, 2 decimals
        - compliance_pct = PASSED / total_cards * 100 (0 if no cards)
        - meeting_ids = distinct meeting ids in first-seen order

    A participant without cards yields an all-zero summary.
    """
    cards = await list_participant_cards(db, participant_id)

    passed = 0
    failed = 0
    tampered = 0
    total_minutes = 0
    meeting_ids: list[str] = []

    for card in cards:
        try:
            status_enum = ValidationStatus(card.validation_status)
        except ValueError:
            status_enum = ValidationStatus.PENDING

        if status_enum is ValidationStatus.PASSED:
            passed += 1
        elif status_enum is ValidationStatus.FAILED:
            failed += 1

        if card.is_tampered:
            tampered += 1

        total_minutes += card.total_duration_min or 0
        if card.meeting_id not in meeting_ids:
            meeting_ids.append(card.meeting_id)

    total_cards = len(cards)
    if total_cards > 0:
        compliance_pct = (passed / float(total_cards)) * 100.0
    else:
        compliance_pct = 0.0

    return ParticipantComplianceSummary(
        participant_id=participant_id,
        total_cards=total_cards,
        passed_count=passed,
        failed_count=failed,
        tampered_count=tampered,
        total_hours_completed=round(total_minutes / 60.0, 2),
        meeting_ids=meeting_ids,
        compliance_pct=round(compliance_pct, 2),
    )
