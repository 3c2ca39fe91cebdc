"""
Tests for invitation responses, lazy expiry and the expiry sweep.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from deuce.database.models import InvitationStatus, MatchInvitation, MatchStatus, MatchType
from deuce.services.errors import (
    AuthorizationError,
    ConflictError,
    InvitationExpiredError,
    SchedulingConflictError,
)
from deuce.services.events import EventKind, pending_events
from deuce.utils.datetime_utils import utcnow


async def _invitations(session, match_id):
    result = await session.execute(
        select(MatchInvitation)
        .where(MatchInvitation.match_id == match_id)
        .order_by(MatchInvitation.id)
    )
    return list(result.scalars().all())


async def _singles(match_engine, session, league, start=None):
    return await match_engine.scheduling.create_match(
        session,
        league.players[0].id,
        league.division.id,
        MatchType.SINGLES,
        opponent_id=league.players[1].id,
        proposed_times=[start] if start else None,
    )


@pytest.mark.asyncio
async def test_accept_seats_invitee(db_session, match_engine, league):
    details = await _singles(match_engine, db_session, league)
    invitation = (await _invitations(db_session, details["id"]))[0]

    response = await match_engine.invitations.respond_to_invitation(
        db_session, invitation.id, league.players[1].id, True
    )

    assert response["status"] == "ACCEPTED"
    assert response["responded_at"] is not None
    match = await match_engine.scheduling.get_match_details(db_session, details["id"])
    seat = [p for p in match["participants"] if p["user_id"] == league.players[1].id][0]
    assert seat["invitation_status"] == "ACCEPTED"
    assert EventKind.INVITATION_ACCEPTED in [e.kind for e in pending_events(db_session)]


@pytest.mark.asyncio
async def test_only_invitee_can_respond(db_session, match_engine, league):
    details = await _singles(match_engine, db_session, league)
    invitation = (await _invitations(db_session, details["id"]))[0]

    with pytest.raises(AuthorizationError):
        await match_engine.invitations.respond_to_invitation(
            db_session, invitation.id, league.players[2].id, True
        )


@pytest.mark.asyncio
async def test_second_response_rejected(db_session, match_engine, league):
    details = await _singles(match_engine, db_session, league)
    invitation = (await _invitations(db_session, details["id"]))[0]
    await match_engine.invitations.respond_to_invitation(
        db_session, invitation.id, league.players[1].id, True
    )

    with pytest.raises(ConflictError, match="already been responded"):
        await match_engine.invitations.respond_to_invitation(
            db_session, invitation.id, league.players[1].id, False
        )


@pytest.mark.asyncio
async def test_decline_of_only_invitation_reverts_to_draft(db_session, match_engine, league):
    details = await _singles(match_engine, db_session, league)
    invitation = (await _invitations(db_session, details["id"]))[0]

    response = await match_engine.invitations.respond_to_invitation(
        db_session, invitation.id, league.players[1].id, False, "Away that week"
    )

    assert response["status"] == "DECLINED"
    assert response["decline_reason"] == "Away that week"
    match = await match_engine.scheduling.get_match_details(db_session, details["id"])
    assert match["status"] == MatchStatus.DRAFT.value


@pytest.mark.asyncio
async def test_partial_decline_keeps_match_scheduled(db_session, match_engine, league):
    details = await match_engine.scheduling.create_match(
        db_session,
        league.players[0].id,
        league.division.id,
        MatchType.DOUBLES,
        opponent_id=league.players[1].id,
        partner_id=league.players[2].id,
        opponent_partner_id=league.players[3].id,
    )
    invitations = await _invitations(db_session, details["id"])

    await match_engine.invitations.respond_to_invitation(
        db_session, invitations[0].id, invitations[0].invitee_id, False
    )

    match = await match_engine.scheduling.get_match_details(db_session, details["id"])
    assert match["status"] == "SCHEDULED"


@pytest.mark.asyncio
async def test_expired_invitation_marked_on_response(db_session, match_engine, league):
    details = await _singles(match_engine, db_session, league)
    invitation = (await _invitations(db_session, details["id"]))[0]
    invitation.expires_at = utcnow() - timedelta(minutes=1)
    await db_session.flush()

    with pytest.raises(InvitationExpiredError):
        await match_engine.invitations.respond_to_invitation(
            db_session, invitation.id, league.players[1].id, True
        )

    assert invitation.status == InvitationStatus.EXPIRED
    match = await match_engine.scheduling.get_match_details(db_session, details["id"])
    assert match["status"] == "DRAFT"
    seat = [p for p in match["participants"] if p["user_id"] == league.players[1].id][0]
    assert seat["invitation_status"] == "EXPIRED"


@pytest.mark.asyncio
async def test_sweep_expires_only_past_deadline(db_session, match_engine, league):
    stale = await _singles(match_engine, db_session, league)
    fresh = await match_engine.scheduling.create_match(
        db_session,
        league.players[2].id,
        league.division.id,
        MatchType.SINGLES,
        opponent_id=league.players[3].id,
    )
    stale_invitation = (await _invitations(db_session, stale["id"]))[0]
    stale_invitation.expires_at = utcnow() - timedelta(hours=1)
    await db_session.flush()

    expired = await match_engine.invitations.sweep_expired_invitations(db_session)

    assert expired == 1
    assert stale_invitation.status == InvitationStatus.EXPIRED
    fresh_invitation = (await _invitations(db_session, fresh["id"]))[0]
    assert fresh_invitation.status == InvitationStatus.PENDING
    assert (await match_engine.scheduling.get_match_details(db_session, stale["id"]))["status"] == "DRAFT"


@pytest.mark.asyncio
async def test_sweep_with_future_clock(db_session, match_engine, league):
    await _singles(match_engine, db_session, league)

    expired = await match_engine.invitations.sweep_expired_invitations(
        db_session, now=utcnow() + timedelta(hours=49)
    )

    assert expired == 1


@pytest.mark.asyncio
async def test_accept_blocked_by_conflict(db_session, match_engine, league, ready_match):
    start = utcnow() + timedelta(days=2)
    # Ben already plays Cara at this time
    await ready_match(start=start, players=[league.players[2], league.players[1]])
    details = await _singles(match_engine, db_session, league, start=start + timedelta(hours=2))
    invitation = (await _invitations(db_session, details["id"]))[0]

    with pytest.raises(SchedulingConflictError):
        await match_engine.invitations.respond_to_invitation(
            db_session, invitation.id, league.players[1].id, True
        )
    assert invitation.status == InvitationStatus.PENDING


@pytest.mark.asyncio
async def test_draft_can_be_reissued(db_session, match_engine, league):
    details = await _singles(match_engine, db_session, league)
    invitation = (await _invitations(db_session, details["id"]))[0]
    await match_engine.invitations.respond_to_invitation(
        db_session, invitation.id, league.players[1].id, False
    )

    reissued = await match_engine.scheduling.edit_draft_match(
        db_session, details["id"], league.players[0].id, opponent_id=league.players[4].id
    )

    assert reissued["status"] == "SCHEDULED"
    assert {p["user_id"] for p in reissued["participants"]} == {
        league.players[0].id,
        league.players[4].id,
    }
    pending = await match_engine.invitations.get_user_invitations(db_session, league.players[4].id)
    assert [i["match_id"] for i in pending] == [details["id"]]


@pytest.mark.asyncio
async def test_reissue_replaces_old_invitations(db_session, match_engine, league):
    details = await _singles(match_engine, db_session, league)
    invitation = (await _invitations(db_session, details["id"]))[0]
    await match_engine.invitations.respond_to_invitation(
        db_session, invitation.id, league.players[1].id, False
    )

    await match_engine.scheduling.edit_draft_match(
        db_session, details["id"], league.players[0].id, opponent_id=league.players[1].id
    )

    invitations = await _invitations(db_session, details["id"])
    assert [(i.invitee_id, i.status) for i in invitations] == [
        (league.players[1].id, InvitationStatus.PENDING)
    ]


@pytest.mark.asyncio
async def test_edit_requires_draft(db_session, match_engine, league):
    details = await _singles(match_engine, db_session, league)
    with pytest.raises(ConflictError, match="draft"):
        await match_engine.scheduling.edit_draft_match(
            db_session, details["id"], league.players[0].id, opponent_id=league.players[4].id
        )
