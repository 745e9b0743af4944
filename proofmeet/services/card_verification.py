# proofmeet/services/card_verification.py
from __future__ import annotations

import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from proofmeet.core.exceptions import CardNotFoundError, IntegrityViolation
from proofmeet.models.compliance_card import ComplianceCard
from proofmeet.schemas.compliance_card import CardVerification, ChainVerification
from proofmeet.services.integrity_chain import IntegrityChainBuilder

logger = logging.getLogger(__name__)


async def get_card_or_raise(db: AsyncSession, card_id: int) -> ComplianceCard:
    result = await db.execute(select(ComplianceCard).where(ComplianceCard.id == card_id))
    card = result.scalar_one_or_none()
    if card is None:
        raise CardNotFoundError(card_id)
    return card


async def list_participant_cards(db: AsyncSession, participant_id: str) -> List[ComplianceCard]:
    result = await db.execute(
        select(ComplianceCard)
        .where(ComplianceCard.participant_id == participant_id)
        .order_by(ComplianceCard.chain_position.asc())
    )
    return list(result.scalars().all())


async def verify_card(db: AsyncSession, card_id: int) -> CardVerification:
    """
    Recompute the card's content hash from its stored fields.

    On mismatch the card is flagged `is_tampered=True` (sticky) and the
    stored hash is left as is. A clean recomputation never clears an
    existing tamper flag.
    """
    card = await get_card_or_raise(db, card_id)

    try:
        recomputed = IntegrityChainBuilder.verify_content(card)
        matches = True
    except IntegrityViolation as violation:
        recomputed = violation.expected_hash
        matches = False
        logger.warning("Tampering detected on card %s: %s", card.card_number, violation)
        if not card.is_tampered:
            card.is_tampered = True
            await db.commit()

    return CardVerification(
        card_id=card.id,
        card_number=card.card_number,
        is_valid=matches and not card.is_tampered,
        is_tampered=bool(card.is_tampered),
        stored_hash=card.content_hash,
        recomputed_hash=recomputed,
    )


async def verify_chain(db: AsyncSession, participant_id: str) -> ChainVerification:
    """
    Replay the participant's whole chain of trust in position order.
    """
    cards = await list_participant_cards(db, participant_id)
    errors = IntegrityChainBuilder.replay(cards)

    for error in errors:
        logger.warning("Chain of trust error for participant %s: %s", participant_id, error)

    return ChainVerification(
        participant_id=participant_id,
        chain_length=len(cards),
        is_valid=not errors,
        errors=errors,
    )
