# tests/test_card_verification_service.py
from datetime import timedelta

import pytest
from sqlalchemy import update

from factories import T0, completed_session, unique_participant

from proofmeet.core.exceptions import CardNotFoundError
from proofmeet.db.session import AsyncSessionLocal, reset_schema
from proofmeet.models.compliance_card import ComplianceCard
from proofmeet.services.card_verification import verify_card, verify_chain
from proofmeet.services.finalization import finalize_session


async def _finalized_chain(participant: str, length: int) -> list[tuple[int, str]]:
    """
    Create `length` finalized cards and return (id, content_hash) pairs.
    """
    created = []
    async with AsyncSessionLocal() as db:
        for day in range(length):
            attendance_session = completed_session(
                participant, meeting_date=T0 + timedelta(days=day)
            )
            db.add(attendance_session)
            await db.commit()
            await db.refresh(attendance_session)
            card = await finalize_session(db, attendance_session)
            created.append((card.id, card.content_hash))
    return created


@pytest.mark.asyncio
async def test_verify_card_accepts_untouched_card():
    await reset_schema()
    [(card_id, content_hash)] = await _finalized_chain(unique_participant(), 1)

    async with AsyncSessionLocal() as db:
        result = await verify_card(db, card_id)

    assert result.is_valid is True
    assert result.is_tampered is False
    assert result.stored_hash == content_hash
    assert result.recomputed_hash == content_hash


@pytest.mark.asyncio
async def test_tampering_is_detected_and_sticky():
    await reset_schema()
    participant = unique_participant()
    chain = await _finalized_chain(participant, 3)
    tampered_id, tampered_hash = chain[1]

    async with AsyncSessionLocal() as db:
        await db.execute(
            update(ComplianceCard)
            .where(ComplianceCard.id == tampered_id)
            .values(total_duration_min=999)
        )
        await db.commit()

    async with AsyncSessionLocal() as db:
        result = await verify_card(db, tampered_id)

    assert result.is_valid is False
    assert result.is_tampered is True
    assert result.stored_hash == tampered_hash
    assert result.recomputed_hash != tampered_hash

    # Restoring the field does not clear the flag.
    async with AsyncSessionLocal() as db:
        await db.execute(
            update(ComplianceCard)
            .where(ComplianceCard.id == tampered_id)
            .values(total_duration_min=60)
        )
        await db.commit()

    async with AsyncSessionLocal() as db:
        again = await verify_card(db, tampered_id)

    assert again.is_tampered is True
    assert again.is_valid is False

    # Neighbours keep their own stored hashes and stay valid.
    async with AsyncSessionLocal() as db:
        for card_id, content_hash in (chain[0], chain[2]):
            neighbour = await verify_card(db, card_id)
            assert neighbour.is_valid is True
            assert neighbour.stored_hash == content_hash


@pytest.mark.asyncio
async def test_verify_chain_reports_tampered_position_only():
    await reset_schema()
    participant = unique_participant()
    chain = await _finalized_chain(participant, 3)

    async with AsyncSessionLocal() as db:
        result = await verify_chain(db, participant)
    assert result.is_valid is True
    assert result.chain_length == 3
    assert result.errors == []

    async with AsyncSessionLocal() as db:
        await db.execute(
            update(ComplianceCard)
            .where(ComplianceCard.id == chain[2][0])
            .values(meeting_name="Edited Meeting")
        )
        await db.commit()

    async with AsyncSessionLocal() as db:
        result = await verify_chain(db, participant)

    assert result.is_valid is False
    assert len(result.errors) == 1
    assert "position 3" in result.errors[0]


@pytest.mark.asyncio
async def test_verify_chain_of_unknown_participant_is_empty_and_valid():
    await reset_schema()

    async with AsyncSessionLocal() as db:
        result = await verify_chain(db, "nobody")

    assert result.is_valid is True
    assert result.chain_length == 0


@pytest.mark.asyncio
async def test_verify_card_missing_raises_lookup_error():
    await reset_schema()

    async with AsyncSessionLocal() as db:
        with pytest.raises(CardNotFoundError):
            await verify_card(db, 999999)


@pytest.mark.asyncio
async def test_verify_card_detects_flipped_verdict():
    await reset_schema()

    async with AsyncSessionLocal() as db:
        attendance_session = completed_session(unique_participant(), attended_minutes=30)
        db.add(attendance_session)
        await db.commit()
        await db.refresh(attendance_session)
        card = await finalize_session(db, attendance_session)
        card_id, content_hash = card.id, card.content_hash
        assert card.validation_status == "FAILED"
        assert card.violations != []

    async with AsyncSessionLocal() as db:
        assert (await verify_card(db, card_id)).is_valid is True

    async with AsyncSessionLocal() as db:
        await db.execute(
            update(ComplianceCard)
            .where(ComplianceCard.id == card_id)
            .values(validation_status="PASSED", violations=[], idle_duration_min=0)
        )
        await db.commit()

    async with AsyncSessionLocal() as db:
        result = await verify_card(db, card_id)

    assert result.is_tampered is True
    assert result.is_valid is False
    assert result.stored_hash == content_hash


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "values",
    [
        {"active_duration_min": 1},
        {"idle_duration_min": 59},
        {"engagement_score": 10},
        {"engagement_flags": ["EDITED"]},
        {"confidence_level": "LOW"},
        {"fraud_risk_score": 90},
    ],
)
async def test_verify_card_detects_edited_derived_fields(values):
    await reset_schema()
    [(card_id, _)] = await _finalized_chain(unique_participant(), 1)

    async with AsyncSessionLocal() as db:
        await db.execute(
            update(ComplianceCard).where(ComplianceCard.id == card_id).values(**values)
        )
        await db.commit()

    async with AsyncSessionLocal() as db:
        result = await verify_card(db, card_id)

    assert result.is_tampered is True
