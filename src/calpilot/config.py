from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List
import yaml

@dataclass
class WorkingHoursConfig:
    start_hour: int
    end_hour: int

@dataclass
class SearchConfig:
    days_back: int
    days_forward: int

@dataclass
class GoogleConfig:
    enabled: bool
    calendar_ids: List[str]

@dataclass
class ICloudConfig:
    enabled: bool
    calendar_name_allowlist: List[str]

@dataclass
class AppConfig:
    timezone: str
    working_hours: WorkingHoursConfig
    default_duration_minutes: int
    slot_suggestions: int
    search: SearchConfig
    pending_choice_ttl_minutes: int
    max_parallel_reads: int
    google: GoogleConfig
    icloud: ICloudConfig


def hours_are_valid(start_hour: int, end_hour: int) -> bool:
    return 0 <= start_hour <= 23 and 1 <= end_hour <= 24 and start_hour < end_hour


def _validate_hours(hours: WorkingHoursConfig) -> None:
    if not (0 <= hours.start_hour <= 23 and 1 <= hours.end_hour <= 24):
        raise ValueError(f"working_hours out of range: {hours.start_hour}-{hours.end_hour}")
    if hours.end_hour <= hours.start_hour:
        raise ValueError("working_hours.end_hour must be after working_hours.start_hour")


def parse_config(data: Dict[str, Any]) -> AppConfig:
    working_hours = data.get("working_hours", {})
    search = data.get("search", {})
    calendars = data.get("calendars", {})

    google = calendars.get("google", {})
    icloud = calendars.get("icloud", {})

    cfg = AppConfig(
        timezone=data.get("timezone", "Africa/Johannesburg"),
        working_hours=WorkingHoursConfig(
            start_hour=int(working_hours.get("start_hour", 8)),
            end_hour=int(working_hours.get("end_hour", 22)),
        ),
        default_duration_minutes=int(data.get("default_duration_minutes", 60)),
        slot_suggestions=int(data.get("slot_suggestions", 3)),
        search=SearchConfig(
            days_back=int(search.get("days_back", 1)),
            days_forward=int(search.get("days_forward", 30)),
        ),
        pending_choice_ttl_minutes=int(data.get("pending_choice_ttl_minutes", 10)),
        max_parallel_reads=int(data.get("max_parallel_reads", 4)),
        google=GoogleConfig(
            enabled=bool(google.get("enabled", True)),
            calendar_ids=list(google.get("calendar_ids", ["primary"])),
        ),
        icloud=ICloudConfig(
            enabled=bool(icloud.get("enabled", False)),
            calendar_name_allowlist=list(icloud.get("calendar_name_allowlist", [])),
        ),
    )
    _validate_hours(cfg.working_hours)
    return cfg

def load_config(path: str) -> AppConfig:
    p = Path(path)
    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    return parse_config(data)
