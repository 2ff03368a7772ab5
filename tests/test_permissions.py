import pytest

from errors import Conflict, NotAuthorized
from models import Donation, DonationDrive, Request, Role, User
from permissions import (
    Actor,
    Operation,
    authorize,
    require,
    strip_protected_fields,
)

ADMIN = Actor(id=1, role=Role.admin)
DONOR = Actor(id=2, role=Role.donor)
RECIPIENT = Actor(id=3, role=Role.recipient)
LOGISTICS = Actor(id=4, role=Role.logistics)
OTHER_DONOR = Actor(id=5, role=Role.donor)


@pytest.mark.parametrize(
    "actor, operation, allowed",
    [
        (DONOR, Operation.create_donation, True),
        (RECIPIENT, Operation.create_donation, False),
        (ADMIN, Operation.create_donation, False),
        (RECIPIENT, Operation.create_request, True),
        (DONOR, Operation.create_request, False),
        (ADMIN, Operation.create_drive, True),
        (LOGISTICS, Operation.create_drive, False),
        (ADMIN, Operation.match_request, True),
        (LOGISTICS, Operation.match_request, True),
        (DONOR, Operation.match_request, False),
        (RECIPIENT, Operation.match_request, False),
        (LOGISTICS, Operation.join_drive, True),
        (RECIPIENT, Operation.join_drive, True),
        (DONOR, Operation.view_reports, False),
    ],
)
def test_role_baseline(actor, operation, allowed):
    assert bool(authorize(actor, operation)) is allowed


def test_owner_may_update_and_delete_own_donation():
    donation = Donation(donor_id=DONOR.id)
    assert authorize(DONOR, Operation.update_donation, donation)
    assert authorize(DONOR, Operation.delete_donation, donation)


def test_non_owner_is_denied_on_donation():
    donation = Donation(donor_id=DONOR.id)
    decision = authorize(OTHER_DONOR, Operation.update_donation, donation)
    assert not decision
    assert decision.kind == "NotAuthorized"
    assert "donation" in decision.reason


def test_admin_may_update_any_request():
    request = Request(recipient_id=RECIPIENT.id)
    assert authorize(ADMIN, Operation.update_request, request)
    assert not authorize(DONOR, Operation.delete_request, request)


def test_owning_recipient_still_cannot_match():
    request = Request(recipient_id=RECIPIENT.id)
    assert not authorize(RECIPIENT, Operation.match_request, request)


def test_drive_changes_are_admin_only():
    drive = DonationDrive(organizer_id=ADMIN.id)
    assert authorize(ADMIN, Operation.update_drive, drive)
    assert not authorize(DONOR, Operation.update_drive, drive)
    assert not authorize(LOGISTICS, Operation.delete_drive, drive)


def test_assigned_logistics_may_fulfil_request():
    request = Request(recipient_id=RECIPIENT.id, logistics_id=LOGISTICS.id)
    assert authorize(LOGISTICS, Operation.fulfill_request, request)
    assert not authorize(Actor(id=99, role=Role.logistics), Operation.fulfill_request, request)
    # cancelling stays with the owner
    assert not authorize(LOGISTICS, Operation.cancel_request, request)


def test_user_may_update_self_but_not_others():
    me = User(id=DONOR.id)
    someone = User(id=RECIPIENT.id)
    assert authorize(DONOR, Operation.update_user, me)
    assert not authorize(DONOR, Operation.update_user, someone)
    assert authorize(ADMIN, Operation.update_user, someone)


def test_admin_cannot_delete_self():
    decision = authorize(ADMIN, Operation.delete_user, User(id=ADMIN.id))
    assert not decision
    assert decision.kind == "Conflict"


def test_admin_deletes_other_user_but_donor_cannot_delete_anyone():
    assert authorize(ADMIN, Operation.delete_user, User(id=DONOR.id))
    decision = authorize(DONOR, Operation.delete_user, User(id=DONOR.id))
    assert not decision
    assert decision.kind == "NotAuthorized"


def test_require_raises_matching_error():
    with pytest.raises(NotAuthorized):
        require(DONOR, Operation.create_drive)
    with pytest.raises(Conflict):
        require(ADMIN, Operation.delete_user, User(id=ADMIN.id))
    require(ADMIN, Operation.create_drive)


def test_strip_protected_fields():
    patch = {
        "name": "New Name",
        "role": "admin",
        "password": "hunter2",
        "is_verified": True,
        "phone": "555-0100",
    }
    assert strip_protected_fields(patch) == {"name": "New Name", "phone": "555-0100"}
