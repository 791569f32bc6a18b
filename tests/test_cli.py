from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

import otf_cli
from otf_booking.models import (
    Booking,
    FilterResult,
    Preferences,
    ScheduleResult,
    ScheduledClass,
    StudioListResult,
)
from otf_booking.preferences import PreferencesStore
from otf_booking.service import OTFBookingService, ResponseError
from test_booking import BOOKING_ITEM
from test_schedule import CLASS_ITEM
from test_studios import STUDIOS_PAYLOAD


@pytest.fixture
def fake_service():
    service = MagicMock(spec=OTFBookingService)
    service.__enter__.return_value = service
    with patch("otf_cli._connect", return_value=service) as connect:
        service.connect = connect
        yield service


@pytest.fixture
def preferences_path(tmp_path):
    return tmp_path / "config.json"


@pytest.fixture
def run(preferences_path):
    runner = CliRunner()

    def invoke(args, input=None):
        return runner.invoke(otf_cli.cli, ["--preferences-path", str(preferences_path), *args], input=input)

    return invoke


def _class(**overrides):
    return ScheduledClass.model_validate({**CLASS_ITEM, **overrides})


class TestSchedules:
    def test_books_selected_class(self, run, fake_service):
        fake_service.get_studios_schedules.return_value = ScheduleResult(items=[
            _class(id="class-0", canceled=True),
            _class(id="class-1", booking_capacity=5),
        ])

        result = run(["schedules", "--studio-ids", "studio-1, studio-2"], input="1\ny\n")

        assert result.exit_code == 0, result.output
        fake_service.get_studios_schedules.assert_called_once_with(["studio-1", "studio-2"])
        fake_service.book_class.assert_called_once_with("class-1", confirmed=False, waitlist=False)
        assert "Orange 60" in result.output
        assert "Successfully booked the class!" in result.output

    def test_full_class_joins_waitlist(self, run, fake_service):
        fake_service.get_studios_schedules.return_value = ScheduleResult(items=[_class(booking_capacity=0)])

        result = run(["schedules", "--studio-ids", "studio-1"], input="1\ny\ny\n")

        assert result.exit_code == 0, result.output
        fake_service.book_class.assert_called_once_with("class-1", confirmed=False, waitlist=True)
        assert "Successfully added to waitlist!" in result.output

    def test_declined_booking(self, run, fake_service):
        fake_service.get_studios_schedules.return_value = ScheduleResult(items=[_class(booking_capacity=5)])

        result = run(["schedules", "--studio-ids", "studio-1"], input="1\nn\n")

        assert result.exit_code == 0, result.output
        fake_service.book_class.assert_not_called()
        assert "Booking cancelled." in result.output

    def test_uses_preferred_studios(self, run, fake_service, preferences_path):
        PreferencesStore(preferences_path).save(Preferences(preferred_studio_ids=["studio-9"], timezone="America/Chicago"))
        fake_service.get_studios_schedules.return_value = ScheduleResult(items=[])

        result = run(["schedules"])

        assert result.exit_code == 0, result.output
        fake_service.get_studios_schedules.assert_called_once_with(["studio-9"])
        assert "No classes found" in result.output

    def test_requires_studio_ids(self, run, fake_service):
        result = run(["schedules"])

        assert result.exit_code == 2
        assert "No studio IDs provided" in result.output
        fake_service.connect.assert_not_called()

    def test_api_error_exits_non_zero(self, run, fake_service):
        fake_service.get_studios_schedules.side_effect = ResponseError("get schedules", 500, "upstream exploded")

        result = run(["schedules", "--studio-ids", "studio-1"])

        assert result.exit_code == 1
        assert "upstream exploded" in result.output


class TestBookings:
    def _bookings(self):
        return [
            Booking.model_validate(BOOKING_ITEM),
            Booking.model_validate(dict(BOOKING_ITEM, id="booking-2", canceled=True)),
        ]

    def test_list_and_cancel(self, run, fake_service):
        fake_service.get_bookings.return_value = self._bookings()

        result = run(["bookings", "list"], input="1\ny\n")

        assert result.exit_code == 0, result.output
        args, kwargs = fake_service.get_bookings.call_args
        assert kwargs == {"include_canceled": True}
        assert args[1] > args[0]
        fake_service.cancel_booking.assert_called_once_with("booking-1")
        assert "Successfully canceled booking for Orange 60 at Austin - East" in result.output

    def test_list_view_only(self, run, fake_service):
        fake_service.get_bookings.return_value = self._bookings()

        result = run(["bookings", "list"], input="0\n")

        assert result.exit_code == 0, result.output
        fake_service.cancel_booking.assert_not_called()
        assert "Your Bookings (2 total)" in result.output
        assert "Canceled" in result.output
        assert "Booking ID: booking-2" in result.output

    def test_list_empty(self, run, fake_service):
        fake_service.get_bookings.return_value = []

        result = run(["bookings", "list"])

        assert result.exit_code == 0
        assert "No bookings found." in result.output

    def test_cancel_by_id(self, run, fake_service):
        result = run(["bookings", "cancel", "booking-7"], input="y\n")

        assert result.exit_code == 0, result.output
        fake_service.cancel_booking.assert_called_once_with("booking-7")
        assert "Successfully canceled booking booking-7" in result.output

    def test_cancel_aborted_before_connecting(self, run, fake_service):
        result = run(["bookings", "cancel", "booking-7"], input="n\n")

        assert result.exit_code == 0
        assert "Cancellation aborted." in result.output
        fake_service.connect.assert_not_called()


class TestConfigure:
    def test_studios_saves_selection(self, run, fake_service, preferences_path):
        fake_service.list_studios.return_value = StudioListResult.model_validate(STUDIOS_PAYLOAD)

        result = run(
            ["configure", "studios", "--latitude", "30.25", "--longitude", "-97.7", "--distance", "5"],
            input="2\n",
        )

        assert result.exit_code == 0, result.output
        fake_service.list_studios.assert_called_once_with(30.25, -97.7, 5.0)
        assert PreferencesStore(preferences_path).load().preferred_studio_ids == ["studio-2"]

    def test_studios_reprompts_on_bad_selection(self, run, fake_service, preferences_path):
        fake_service.list_studios.return_value = StudioListResult.model_validate(STUDIOS_PAYLOAD)

        result = run(
            ["configure", "studios", "--latitude", "30.25", "--longitude", "-97.7", "--distance", "5"],
            input="7\n1,2\n",
        )

        assert result.exit_code == 0, result.output
        assert "not a number between 1 and 2" in result.output
        assert PreferencesStore(preferences_path).load().preferred_studio_ids == ["studio-1", "studio-2"]

    def test_studios_falls_back_to_prompt_when_ip_lookup_fails(self, run, fake_service):
        fake_service.list_studios.return_value = StudioListResult()

        with patch("otf_cli._locate_by_ip", return_value=None):
            result = run(["configure", "studios"], input="40.7\n-74.0\n10\n")

        assert result.exit_code == 0, result.output
        fake_service.list_studios.assert_called_once_with(40.7, -74.0, 10.0)
        assert "No studios found" in result.output

    def test_timezone(self, run, preferences_path):
        result = run(["configure", "timezone"], input="2\n")

        assert result.exit_code == 0, result.output
        assert PreferencesStore(preferences_path).load().timezone == "America/Chicago"
        assert "Timezone set to: America/Chicago" in result.output

    def test_timezone_system_local(self, run, preferences_path):
        PreferencesStore(preferences_path).save(Preferences(timezone="Europe/Lisbon"))
        choice = len(otf_cli.TIMEZONES) + 2

        result = run(["configure", "timezone"], input=f"{choice}\n")

        assert result.exit_code == 0, result.output
        assert PreferencesStore(preferences_path).load().timezone == ""
        assert "system local timezone" in result.output


def test_filters(run, fake_service):
    fake_service.get_class_type_filter.return_value = FilterResult.model_validate({
        "items": [{"name": "class_type", "display_name": "Class Type",
                   "values": [{"value": "ORANGE_60", "display_name": "Orange 60"}]}]
    })

    result = run(["filters"])

    assert result.exit_code == 0, result.output
    assert "Class Type" in result.output
    assert "Orange 60 (ORANGE_60)" in result.output


def test_parse_selection():
    assert otf_cli._parse_selection("", 3) == []
    assert otf_cli._parse_selection("3, 1,3", 3) == [3, 1]
