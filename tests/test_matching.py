import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlmodel import Session

import crud
import matching
from db import create_db_and_tables, make_engine
from errors import InvalidState, NotAuthorized, NotFound
from factories import donation_payload, drive_payload, new_user, request_payload
from models import Donation, DonationStatus, Request, RequestStatus, Role
from permissions import Actor


@pytest.fixture
def pair(session, actor):
    """A pending request and an available donation."""
    donation = crud.create_donation(session, actor(Role.donor), donation_payload())
    recipient = actor(Role.recipient)
    request = crud.create_request(session, recipient, request_payload())
    return recipient, request.id, donation.id


def test_admin_match_assigns_admin_as_logistics(session, actor, pair):
    _, request_id, donation_id = pair
    admin = actor(Role.admin)

    request = matching.match_request(session, admin, request_id, donation_id)

    assert request.status == RequestStatus.matched
    assert request.matched_donation_id == donation_id
    assert request.logistics_id == admin.id
    # the donation keeps its own lifecycle
    donation = session.get(Donation, donation_id)
    assert donation.status == DonationStatus.available


def test_second_match_is_rejected(session, actor, pair):
    _, request_id, donation_id = pair
    first = actor(Role.logistics)
    matching.match_request(session, first, request_id, donation_id)

    with pytest.raises(InvalidState):
        matching.match_request(session, actor(Role.logistics), request_id, donation_id)

    request = session.get(Request, request_id)
    assert request.logistics_id == first.id


def test_donor_cannot_match(session, actor, pair):
    _, request_id, donation_id = pair
    with pytest.raises(NotAuthorized):
        matching.match_request(session, actor(Role.donor), request_id, donation_id)
    assert session.get(Request, request_id).status == RequestStatus.pending


def test_match_unknown_ids(session, actor, pair):
    _, request_id, donation_id = pair
    admin = actor(Role.admin)
    with pytest.raises(NotFound, match="Request"):
        matching.match_request(session, admin, 999, donation_id)
    with pytest.raises(NotFound, match="Donation"):
        matching.match_request(session, admin, request_id, 999)


def test_match_from_stale_session_loses(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'race.db'}")
    create_db_and_tables(engine)
    try:
        with Session(engine) as setup:
            donor = Actor.from_user(new_user(setup, Role.donor))
            recipient = Actor.from_user(new_user(setup, Role.recipient))
            first = Actor.from_user(new_user(setup, Role.logistics))
            second = Actor.from_user(new_user(setup, Role.logistics))
            donation_id = crud.create_donation(setup, donor, donation_payload()).id
            request_id = crud.create_request(setup, recipient, request_payload()).id

        with Session(engine) as a, Session(engine) as b:
            # both callers have seen the request while it was pending
            assert a.get(Request, request_id).status == RequestStatus.pending
            assert b.get(Request, request_id).status == RequestStatus.pending

            matching.match_request(a, first, request_id, donation_id)
            with pytest.raises(InvalidState):
                matching.match_request(b, second, request_id, donation_id)

        with Session(engine) as check:
            assert check.get(Request, request_id).logistics_id == first.id
    finally:
        engine.dispose()


def test_concurrent_matches_succeed_once(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'threads.db'}")
    create_db_and_tables(engine)
    try:
        with Session(engine) as setup:
            donor = Actor.from_user(new_user(setup, Role.donor))
            recipient = Actor.from_user(new_user(setup, Role.recipient))
            handlers = [Actor.from_user(new_user(setup, Role.logistics)) for _ in range(4)]
            donation_id = crud.create_donation(setup, donor, donation_payload()).id
            request_id = crud.create_request(setup, recipient, request_payload()).id

        start = threading.Barrier(len(handlers), timeout=10)

        def attempt(handler):
            with Session(engine) as session:
                session.get(Request, request_id)
                start.wait()
                try:
                    matching.match_request(session, handler, request_id, donation_id)
                except InvalidState:
                    return "lost"
                return "won"

        with ThreadPoolExecutor(max_workers=len(handlers)) as pool:
            outcomes = list(pool.map(attempt, handlers))

        assert sorted(outcomes) == ["lost", "lost", "lost", "won"]
        winner = handlers[outcomes.index("won")]
        with Session(engine) as check:
            request = check.get(Request, request_id)
            assert request.status == RequestStatus.matched
            assert request.logistics_id == winner.id
    finally:
        engine.dispose()


def test_request_lifecycle(session, actor, pair):
    recipient, request_id, donation_id = pair
    handler = actor(Role.logistics)
    matching.match_request(session, handler, request_id, donation_id)

    request = matching.set_request_status(session, handler, request_id, RequestStatus.fulfilled)
    assert request.status == RequestStatus.fulfilled

    with pytest.raises(InvalidState):
        matching.set_request_status(session, recipient, request_id, RequestStatus.cancelled)


def test_fulfilling_pending_request_is_invalid(session, pair):
    recipient, request_id, _ = pair
    with pytest.raises(InvalidState):
        matching.set_request_status(session, recipient, request_id, RequestStatus.fulfilled)


def test_owner_cancels_pending_request(session, actor, pair):
    recipient, request_id, _ = pair
    with pytest.raises(NotAuthorized):
        matching.set_request_status(
            session, actor(Role.recipient), request_id, RequestStatus.cancelled
        )
    request = matching.set_request_status(session, recipient, request_id, RequestStatus.cancelled)
    assert request.status == RequestStatus.cancelled
    assert request.matched_donation_id is None


def test_logistics_reserves_donation_and_becomes_handler(session, actor, pair):
    recipient, _, donation_id = pair
    handler = actor(Role.logistics)

    donation = matching.set_donation_status(
        session, handler, donation_id, DonationStatus.reserved, recipient_id=recipient.id
    )
    assert donation.status == DonationStatus.reserved
    assert donation.recipient_id == recipient.id
    assert donation.logistics_id == handler.id

    donation = matching.set_donation_status(session, handler, donation_id, DonationStatus.donated)
    assert donation.status == DonationStatus.donated

    with pytest.raises(InvalidState):
        matching.set_donation_status(session, handler, donation_id, DonationStatus.expired)


def test_reserving_for_unknown_user_fails(session, actor, pair):
    _, _, donation_id = pair
    with pytest.raises(NotFound):
        matching.set_donation_status(
            session, actor(Role.admin), donation_id, DonationStatus.reserved, recipient_id=999
        )
    assert session.get(Donation, donation_id).status == DonationStatus.available


def test_recipient_cannot_change_donation_status(session, actor, pair):
    recipient, _, donation_id = pair
    with pytest.raises(NotAuthorized):
        matching.set_donation_status(session, recipient, donation_id, DonationStatus.expired)


def test_expiring_donation_updates_drive_progress(session, actor):
    drive = crud.create_drive(session, actor(Role.admin), drive_payload())
    donor = actor(Role.donor)
    donation = crud.create_donation(session, donor, donation_payload(drive_id=drive.id))
    session.refresh(drive)
    assert drive.progress["total_donations"] == 1

    matching.set_donation_status(session, donor, donation.id, DonationStatus.expired)

    session.refresh(drive)
    assert drive.progress["total_donations"] == 0
    assert drive.current_donations == [donation.id]
