from datetime import datetime, timezone

from faceclock.database.models import AttendanceEvent, EventKind
from faceclock.main import _apply_overrides, _build_parser, _events_command, _identities_command, _open_store


def test_flags_override_settings(settings):
    args = _build_parser().parse_args(["run", "--threshold", "0.6", "--min-samples", "5", "--no-gpu"])

    updated = _apply_overrides(settings, args)

    assert updated.match_threshold == 0.6
    assert updated.min_consecutive_samples == 5
    assert updated.prefer_gpu is False
    assert updated.data_dir == settings.data_dir


def test_without_flags_settings_are_unchanged(settings):
    args = _build_parser().parse_args(["identities"])

    assert _apply_overrides(settings, args) is settings


def test_listing_commands_print_store_contents(settings, capsys):
    store = _open_store(settings)
    assert _identities_command(settings) == 0
    assert "No identities enrolled." in capsys.readouterr().out

    ada = store.enroll("E-1", "Ada Lovelace", [1.0, 0.0, 0.0, 0.0])
    store.record_clock(ada.id, EventKind.ENTER, datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc))
    store.append_event(
        AttendanceEvent(
            identity_id=ada.id,
            identity_name_snapshot=ada.display_name,
            timestamp=datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc),
            kind=EventKind.ENTER,
            confidence=0.93,
        )
    )

    assert _identities_command(settings) == 0
    listed = capsys.readouterr().out
    assert "Ada Lovelace" in listed
    assert "IN" in listed

    assert _events_command(settings, None, None) == 0
    assert "enter" in capsys.readouterr().out
    assert _events_command(settings, datetime(2025, 1, 1), None) == 0
    assert "No attendance events in range." in capsys.readouterr().out
