from __future__ import annotations
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional, Dict, Any
import json

from .config import AppConfig, WorkingHoursConfig, hours_are_valid

@dataclass
class Preferences:
    working_hours_start: Optional[int] = None
    working_hours_end: Optional[int] = None
    default_duration_minutes: Optional[int] = None

    def working_hours(self, cfg: AppConfig) -> WorkingHoursConfig:
        start = cfg.working_hours.start_hour if self.working_hours_start is None else self.working_hours_start
        end = cfg.working_hours.end_hour if self.working_hours_end is None else self.working_hours_end
        if not hours_are_valid(start, end):
            # An override outside 0-24 or that inverts the window is ignored.
            return cfg.working_hours
        return WorkingHoursConfig(start_hour=start, end_hour=end)

    def default_duration(self, cfg: AppConfig) -> int:
        if self.default_duration_minutes and self.default_duration_minutes > 0:
            return self.default_duration_minutes
        return cfg.default_duration_minutes


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)

def load_preferences(path: Optional[str]) -> Preferences:
    if not path:
        return Preferences()
    p = Path(path)
    if not p.exists():
        return Preferences()
    data: Dict[str, Any] = json.loads(p.read_text(encoding="utf-8"))
    return Preferences(
        working_hours_start=_optional_int(data.get("working_hours_start")),
        working_hours_end=_optional_int(data.get("working_hours_end")),
        default_duration_minutes=_optional_int(data.get("default_duration_minutes")),
    )

def save_preferences(path: str, prefs: Preferences) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(asdict(prefs), indent=2), encoding="utf-8")
