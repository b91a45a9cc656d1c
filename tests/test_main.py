import json
from datetime import date, datetime, time

import pytest

from fakes import TZ, FakeSource, at, event

import calpilot.main as main_mod
from calpilot.calendar_google import GoogleCalendarSource
from calpilot.calendar_icloud import ICloudCalendarSource
from calpilot.config import parse_config


@pytest.fixture(autouse=True)
def _no_env(monkeypatch):
    for name in (
        "GOOGLE_CREDENTIALS_JSON",
        "GOOGLE_TOKEN_JSON",
        "GOOGLE_SERVICE_ACCOUNT_JSON",
        "ICLOUD_USERNAME",
        "ICLOUD_APP_PASSWORD",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(main_mod, "load_dotenv", lambda: None)


def _config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("timezone: 'Africa/Johannesburg'\n", encoding="utf-8")
    return str(path)


def _local(day, hour):
    return datetime.combine(day, time(hour), tzinfo=TZ)


def _run(monkeypatch, tmp_path, sources, *argv):
    monkeypatch.setattr(main_mod, "build_sources", lambda cfg, tz: sources)
    return main_mod.main(
        ["--config", _config_file(tmp_path), "--preferences", str(tmp_path / "prefs.json"), *argv]
    )


def test_google_sources_follow_configured_order(monkeypatch):
    monkeypatch.setenv("GOOGLE_TOKEN_JSON", "/tmp/token.json")
    cfg = parse_config({"calendars": {"google": {"calendar_ids": ["primary", "family"]}}})

    sources = main_mod.build_sources(cfg, TZ)

    assert [s.source_id for s in sources] == ["google:primary", "google:family"]
    assert all(isinstance(s, GoogleCalendarSource) for s in sources)


def test_google_without_credentials_is_skipped(caplog):
    cfg = parse_config({})

    sources = main_mod.build_sources(cfg, TZ)

    assert sources == []
    assert "skipping Google" in caplog.text


def test_icloud_sources_come_after_google(monkeypatch):
    monkeypatch.setenv("GOOGLE_SERVICE_ACCOUNT_JSON", "/tmp/sa.json")
    monkeypatch.setenv("ICLOUD_USERNAME", "me@icloud.com")
    monkeypatch.setenv("ICLOUD_APP_PASSWORD", "app-pass")
    cfg = parse_config(
        {"calendars": {"icloud": {"enabled": True, "calendar_name_allowlist": ["Personal", "Family"]}}}
    )

    sources = main_mod.build_sources(cfg, TZ)

    assert [s.source_id for s in sources] == ["google:primary", "icloud:Personal", "icloud:Family"]
    assert isinstance(sources[1], ICloudCalendarSource)


def test_icloud_without_allowlist_is_skipped(monkeypatch, caplog):
    monkeypatch.setenv("ICLOUD_USERNAME", "me@icloud.com")
    monkeypatch.setenv("ICLOUD_APP_PASSWORD", "app-pass")
    cfg = parse_config({"calendars": {"google": {"enabled": False}, "icloud": {"enabled": True}}})

    assert main_mod.build_sources(cfg, TZ) == []
    assert "calendar_name_allowlist is empty" in caplog.text


def test_day_command_prints_merged_schedule(monkeypatch, tmp_path, capsys):
    work = FakeSource("google:primary", [event("a", at(5, 9), at(5, 10), title="Standup")])
    home = FakeSource("icloud:Personal", [event("b", at(5, 18), at(5, 19), title="Dinner")])

    code = _run(monkeypatch, tmp_path, [work, home], "day", "2026-03-05")

    out = capsys.readouterr().out
    assert code == 0
    assert "1. **Standup** - 09:00 to 10:00" in out
    assert "2. **Dinner** - 18:00 to 19:00" in out


def test_free_command_respects_limit(monkeypatch, tmp_path, capsys):
    busy = FakeSource("google:primary", [event("a", at(5, 9), at(5, 10)), event("b", at(5, 11), at(5, 12))])

    code = _run(monkeypatch, tmp_path, [busy], "free", "2026-03-05", "--duration", "60", "--limit", "2")

    out = capsys.readouterr().out
    assert code == 0
    assert "- 08:00 - 09:00" in out
    assert "- 10:00 - 11:00" in out
    assert "12:00" not in out


def test_cancel_command_deletes_on_named_source(monkeypatch, tmp_path, capsys):
    home = FakeSource("icloud:Personal", [event("b", at(5, 18), at(5, 19))])

    code = _run(monkeypatch, tmp_path, [FakeSource("google:primary"), home], "cancel", "icloud:Personal", "b")

    assert code == 0
    assert json.loads(capsys.readouterr().out) == {"ok": True}
    assert home.writes() == [("delete", "b")]


def test_reschedule_command_prints_moved_event(monkeypatch, tmp_path, capsys):
    work = FakeSource("google:primary", [event("a", at(5, 9), at(5, 10), title="Standup")])

    code = _run(
        monkeypatch, tmp_path, [work],
        "reschedule", "google:primary", "a", "--date", "2026-03-06", "--start-time", "11:30", "--duration", "30",
    )

    moved = json.loads(capsys.readouterr().out)
    assert code == 0
    assert moved["start"] == "2026-03-06T11:30:00+02:00"
    assert moved["end"] == "2026-03-06T12:00:00+02:00"
    assert moved["title"] == "Standup"


def test_calendar_errors_exit_non_zero_with_apology(monkeypatch, tmp_path, capsys):
    code = _run(monkeypatch, tmp_path, [FakeSource("google:primary")], "cancel", "google:primary", "missing")

    assert code == 1
    assert "couldn't find that event" in capsys.readouterr().out


def test_all_sources_down_is_reported(monkeypatch, tmp_path, capsys):
    sources = [FakeSource("google:primary", fail=True), FakeSource("icloud:Personal", fail=True)]

    code = _run(monkeypatch, tmp_path, sources, "day", "2026-03-05")

    assert code == 1
    assert "couldn't reach any of your calendars" in capsys.readouterr().out


def test_handle_command_runs_json_payload(monkeypatch, tmp_path, capsys):
    work = FakeSource("google:primary")
    payload = json.dumps({"action": "create_event", "title": "Lunch", "date": "2026-03-05", "start_time": "12:00"})

    code = _run(monkeypatch, tmp_path, [work], "handle", "--payload", payload)

    assert code == 0
    assert capsys.readouterr().out.startswith("**Event added:** Lunch")
    assert work.writes()[0][1].start == at(5, 12)


def test_free_command_rejects_zero_duration(monkeypatch, tmp_path, capsys):
    busy = FakeSource("google:primary")

    code = _run(monkeypatch, tmp_path, [busy], "free", "2026-03-05", "--duration", "0")

    assert code == 1
    assert "Duration must be positive" in capsys.readouterr().out
    assert busy.calls == []


def test_handle_without_choice_points_at_the_choose_flag(monkeypatch, tmp_path, capsys):
    work = FakeSource("google:primary")
    payload = json.dumps({"action": "create_event", "title": "Lunch", "date": "2026-03-05"})

    code = _run(monkeypatch, tmp_path, [work], "handle", "--payload", payload)

    out = capsys.readouterr().out
    assert code == 0
    assert "Reply with the number" not in out
    assert out.rstrip().endswith(main_mod.CLI_REPLY_PROMPT)
    assert work.writes() == []


def test_handle_with_choice_books_the_picked_slot(monkeypatch, tmp_path, capsys):
    work = FakeSource("google:primary", [event("a", at(5, 9), at(5, 10))])
    payload = json.dumps({"action": "create_event", "title": "Lunch", "date": "2026-03-05"})

    code = _run(monkeypatch, tmp_path, [work], "handle", "--payload", payload, "--choose", "2")

    assert code == 0
    assert capsys.readouterr().out.startswith("**Event added:** Lunch")
    assert work.writes()[0][1].start == at(5, 10)


def test_create_with_choice_picks_among_candidates(monkeypatch, tmp_path, capsys):
    work = FakeSource("google:primary")

    code = _run(monkeypatch, tmp_path, [work], "create", "--title", "Gym", "--date", "2026-03-05", "--choose", "1")

    assert code == 0
    assert work.writes()[0][1].start == at(5, 8)


def test_cancel_candidates_list_ends_with_cli_prompt(monkeypatch, tmp_path, capsys):
    today = datetime.now(tz=TZ).date()
    gyms = [
        event("g1", _local(today, 7), _local(today, 8), title="Gym"),
        event("g2", _local(today, 18), _local(today, 19), title="Gym"),
    ]
    work = FakeSource("google:primary", gyms)
    payload = json.dumps({"action": "cancel_event", "target_event": "gym"})

    code = _run(monkeypatch, tmp_path, [work], "handle", "--payload", payload)

    out = capsys.readouterr().out
    assert code == 0
    assert "Which one should I cancel?" in out
    assert out.rstrip().endswith(main_mod.CLI_REPLY_PROMPT)


@pytest.mark.parametrize(
    "today, expected",
    [
        (date(2026, 3, 1), (date(2026, 3, 2), date(2026, 3, 8))),   # Sunday evening reminder
        (date(2026, 3, 5), (date(2026, 3, 9), date(2026, 3, 15))),
        (date(2026, 3, 9), (date(2026, 3, 16), date(2026, 3, 22))),
    ],
)
def test_next_week_runs_monday_to_sunday(today, expected):
    assert main_mod.next_week(today) == expected


def test_weekly_command_summarises_next_week(monkeypatch, tmp_path, capsys):
    monday, sunday = main_mod.next_week(datetime.now(tz=TZ).date())
    inside = event("plan", _local(monday, 9), _local(monday, 10), title="Planning")
    work = FakeSource("google:primary", [inside])

    code = _run(monkeypatch, tmp_path, [work], "weekly")

    out = capsys.readouterr().out
    assert code == 0
    assert out.startswith("**Weekly planning:**")
    assert "**Planning**" in out
    listed = work.calls[0]
    assert listed[1].date() == monday
    assert listed[2].date() == sunday
