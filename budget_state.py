"""
Persisted key-value state shared by every channel of the app budget agent.

The document is a flat JSON object of primitives, timestamps (ISO-8601
strings) and string-keyed maps. Writes replace the whole file atomically;
there is no transactional guarantee beyond that.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger("app-budget-agent.state")

KEY_SELECTED_TARGETS = "selected_targets"
KEY_ORDERED_TARGETS = "ordered_targets"
KEY_APP_LIMITS = "app_limits"
KEY_CONTINUOUS_ALERT_LIMITS = "continuous_alert_limits"
KEY_USAGE_MINUTES = "usage_minutes"
KEY_USAGE_UPDATED_AT = "usage_updated_at"
KEY_USAGE_EVENT_ACCEPTED_AT = "usage_event_accepted_at"
KEY_CONTINUOUS_USAGE = "continuous_usage_minutes"
KEY_CONTINUOUS_ACTIVE_INDEX = "continuous_active_index"
KEY_CONTINUOUS_LAST_EVENT_AT = "continuous_last_event_at"
KEY_CONTINUOUS_LAST_NOTIFIED_AT = "continuous_last_notified_at"
KEY_LAST_RESET_AT = "last_reset_at"
KEY_LAST_REARM_AT = "last_rearm_at"
KEY_REPORT_LAST_RUN_AT = "report_last_run_at"
KEY_BLOCKED_TARGETS = "blocked_targets"
KEY_RESET_HOUR = "reset_hour"
KEY_RESET_MINUTE = "reset_minute"
KEY_MONITORING_ENABLED = "monitoring_enabled"

CONTINUOUS_KEYS = (
    KEY_CONTINUOUS_USAGE,
    KEY_CONTINUOUS_LAST_EVENT_AT,
    KEY_CONTINUOUS_LAST_NOTIFIED_AT,
    KEY_CONTINUOUS_ACTIVE_INDEX,
)


def index_key(index: int) -> str:
    return f"idx_{index}"


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def dual_read_max(values: Dict[str, int], index: int, target: str) -> int:
    """Effective value of a dual-keyed counter: the larger of both slots."""
    return max(values.get(index_key(index), 0), values.get(target, 0))


def dual_read_first(values: Dict[str, Any], index: int, target: str) -> Any:
    """Index slot first, then the target slot."""
    value = values.get(index_key(index))
    if value is None:
        value = values.get(target)
    return value


def dual_write(values: Dict[str, Any], index: int, target: str, value: Any) -> None:
    values[index_key(index)] = value
    values[target] = value


def dual_remove(values: Dict[str, Any], index: int, target: Optional[str] = None) -> None:
    values.pop(index_key(index), None)
    if target is not None:
        values.pop(target, None)


class BudgetState:
    def __init__(self, path: Path):
        self.path = path
        self._data: Dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
            if isinstance(data, dict):
                self._data = data
            else:
                logger.warning("State file %s is not an object, starting fresh.", self.path)
        except FileNotFoundError:
            pass
        except Exception:
            logger.warning("Failed to read state file, starting fresh.", exc_info=True)

    def save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(".tmp")
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(self._data, handle, indent=2, sort_keys=True)
            tmp_path.replace(self.path)
        except Exception:
            logger.error("Unable to persist budget state.", exc_info=True)

    # ------------------------------------------------------------ PRIMITIVES --

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def get_int(self, key: str) -> Optional[int]:
        return _as_int(self._data.get(key))

    def set_int(self, key: str, value: int) -> None:
        self._data[key] = int(value)

    def get_bool(self, key: str) -> bool:
        return bool(self._data.get(key, False))

    def set_bool(self, key: str, value: bool) -> None:
        self._data[key] = bool(value)

    def get_timestamp(self, key: str) -> Optional[datetime]:
        return _parse_timestamp(self._data.get(key))

    def set_timestamp(self, key: str, value: datetime) -> None:
        self._data[key] = value.isoformat()

    def get_int_map(self, key: str) -> Dict[str, int]:
        raw = self._data.get(key)
        if not isinstance(raw, dict):
            return {}
        result: Dict[str, int] = {}
        for name, value in raw.items():
            parsed = _as_int(value)
            if parsed is not None:
                result[str(name)] = parsed
        return result

    def has_map(self, key: str) -> bool:
        return isinstance(self._data.get(key), dict)

    def set_int_map(self, key: str, values: Dict[str, int]) -> None:
        self._data[key] = {name: int(value) for name, value in values.items()}

    def get_timestamp_map(self, key: str) -> Dict[str, datetime]:
        raw = self._data.get(key)
        if not isinstance(raw, dict):
            return {}
        result: Dict[str, datetime] = {}
        for name, value in raw.items():
            parsed = _parse_timestamp(value)
            if parsed is not None:
                result[str(name)] = parsed
        return result

    def set_timestamp_map(self, key: str, values: Dict[str, datetime]) -> None:
        self._data[key] = {name: value.isoformat() for name, value in values.items()}

    def get_str_list(self, key: str) -> List[str]:
        raw = self._data.get(key)
        if not isinstance(raw, list):
            return []
        return [item for item in raw if isinstance(item, str)]

    def set_str_list(self, key: str, values: List[str]) -> None:
        self._data[key] = list(values)

    # ------------------------------------------------------------- SETTINGS --

    def reset_time(self) -> Tuple[int, int]:
        hour = self.get_int(KEY_RESET_HOUR) or 0
        minute = self.get_int(KEY_RESET_MINUTE) or 0
        if not 0 <= hour <= 23:
            hour = 0
        if not 0 <= minute <= 59:
            minute = 0
        return hour, minute

    def set_reset_time(self, hour: int, minute: int) -> None:
        self.set_int(KEY_RESET_HOUR, hour)
        self.set_int(KEY_RESET_MINUTE, minute)

    def clear_continuous_usage(self) -> None:
        for key in CONTINUOUS_KEYS:
            self.remove(key)
