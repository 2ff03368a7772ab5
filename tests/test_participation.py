import pytest

import crud
import matching
from errors import Conflict, NotFound
from factories import donation_payload, drive_payload
from models import DonationStatus, Role
from participation import drive_read, join_as_volunteer, list_volunteers
from schemas import DonationUpdate


@pytest.fixture
def drive(session, actor):
    return crud.create_drive(session, actor(Role.admin), drive_payload())


def test_join_adds_volunteer_with_default_role(session, actor, drive):
    donor = actor(Role.donor)
    volunteer = join_as_volunteer(session, donor, drive.id)

    assert volunteer.user_id == donor.id
    assert volunteer.role == "volunteer"
    assert volunteer.joined_at is not None


def test_joining_twice_conflicts_and_keeps_one_entry(session, actor, drive):
    recipient = actor(Role.recipient)
    join_as_volunteer(session, recipient, drive.id)

    with pytest.raises(Conflict, match="Already a volunteer"):
        join_as_volunteer(session, recipient, drive.id, "driver")

    volunteers = list_volunteers(session, drive.id)
    assert [(v.user_id, v.role) for v in volunteers] == [(recipient.id, "volunteer")]


def test_custom_role_label(session, actor, drive):
    join_as_volunteer(session, actor(Role.logistics), drive.id, "driver")
    assert list_volunteers(session, drive.id)[0].role == "driver"


def test_join_unknown_drive(session, actor):
    with pytest.raises(NotFound):
        join_as_volunteer(session, actor(Role.donor), 404)


def test_drive_read_lists_volunteers(session, actor, drive):
    first = actor(Role.donor)
    second = actor(Role.recipient)
    join_as_volunteer(session, first, drive.id)
    join_as_volunteer(session, second, drive.id, "sorter")

    read = drive_read(session, drive)
    assert read.id == drive.id
    assert [(v.user_id, v.role) for v in read.volunteers] == [
        (first.id, "volunteer"),
        (second.id, "sorter"),
    ]


def test_progress_sums_items_per_subcategory_and_unit(session, actor, drive):
    donor = actor(Role.donor)
    for quantity in (4, 6):
        crud.create_donation(
            session, donor, donation_payload(drive_id=drive.id, quantity=quantity)
        )
    crud.create_donation(
        session,
        donor,
        donation_payload(drive_id=drive.id, subcategory="rice", quantity=3, unit="bags"),
    )
    expired = crud.create_donation(
        session, donor, donation_payload(drive_id=drive.id, quantity=50)
    )
    matching.set_donation_status(session, donor, expired.id, DonationStatus.expired)

    session.refresh(drive)
    assert drive.progress["total_donations"] == 3
    assert drive.progress["items_collected"] == [
        {"item": "canned", "quantity": 10, "unit": "cans"},
        {"item": "rice", "quantity": 3, "unit": "bags"},
    ]
    assert len(drive.current_donations) == 4


def test_moving_donation_between_drives(session, actor, drive):
    other = crud.create_drive(session, actor(Role.admin), drive_payload(title="Food drive"))
    donor = actor(Role.donor)
    donation = crud.create_donation(session, donor, donation_payload(drive_id=drive.id))

    crud.update_donation(session, donor, donation.id, DonationUpdate(drive_id=other.id))

    session.refresh(drive)
    session.refresh(other)
    assert drive.current_donations == []
    assert other.current_donations == [donation.id]
