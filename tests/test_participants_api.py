# tests/test_participants_api.py
from http import HTTPStatus

import pytest
from sqlalchemy import update

from factories import finalized_card_via_api, unique_participant

from proofmeet.db.session import AsyncSessionLocal
from proofmeet.models.compliance_card import ComplianceCard


def test_participant_cards_are_listed_in_chain_order(client):
    participant = unique_participant()
    first = finalized_card_via_api(client, participant, day=18)
    second = finalized_card_via_api(client, participant, day=25)

    response = client.get(f"/participants/{participant}/cards")

    assert response.status_code == HTTPStatus.OK
    cards = response.json()
    assert [c["id"] for c in cards] == [first["id"], second["id"]]
    assert [c["chain_position"] for c in cards] == [1, 2]
    assert cards[1]["previous_card_hash"] == cards[0]["content_hash"]


def test_unknown_participant_has_empty_chain(client):
    participant = unique_participant()

    assert client.get(f"/participants/{participant}/cards").json() == []

    chain = client.get(f"/participants/{participant}/chain/verify").json()
    assert chain["is_valid"] is True
    assert chain["chain_length"] == 0


@pytest.mark.asyncio
async def test_chain_verification_flags_edited_card(client):
    participant = unique_participant()
    finalized_card_via_api(client, participant, day=18)
    second = finalized_card_via_api(client, participant, day=25)

    intact = client.get(f"/participants/{participant}/chain/verify")
    assert intact.status_code == HTTPStatus.OK
    assert intact.json()["is_valid"] is True
    assert intact.json()["chain_length"] == 2

    async with AsyncSessionLocal() as db:
        await db.execute(
            update(ComplianceCard)
            .where(ComplianceCard.id == second["id"])
            .values(total_duration_min=75)
        )
        await db.commit()

    broken = client.get(f"/participants/{participant}/chain/verify").json()
    assert broken["is_valid"] is False
    assert len(broken["errors"]) == 1
    assert "position 2" in broken["errors"][0]


def test_participant_summary(client):
    participant = unique_participant()
    finalized_card_via_api(client, participant, day=18, attended=60)
    finalized_card_via_api(client, participant, day=25, attended=30)

    response = client.get(f"/participants/{participant}/summary")

    assert response.status_code == HTTPStatus.OK
    data = response.json()
    assert data["participant_id"] == participant
    assert data["total_cards"] == 2
    assert data["passed_count"] == 1
    assert data["failed_count"] == 1
    assert data["total_hours_completed"] == 1.5
    assert data["compliance_pct"] == 50.0
