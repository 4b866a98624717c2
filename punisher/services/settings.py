import os
import threading
from dataclasses import dataclass, asdict, replace

from dotenv import load_dotenv

from punisher.services.exceptions import InvalidConfiguration


@dataclass(frozen=True)
class SettingsSnapshot:
    """Immutable copy of the settings, read once per decision."""
    intensity_multiplier: float = 1.0
    intensity_cap: int = 200
    baseline_intensity: int = 20
    combo_increment: int = 1
    decay_duration_seconds: float = 2.0
    punish_all_players: bool = False
    is_local_match: bool = False

    def to_dict(self):
        return asdict(self)


def _parse_float(field, value):
    if isinstance(value, bool):
        raise InvalidConfiguration(field, value, "expected a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidConfiguration(field, value, "expected a number")


def _parse_int(field, value):
    if isinstance(value, bool):
        raise InvalidConfiguration(field, value, "expected an integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidConfiguration(field, value, "expected an integer")
        return int(value)
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise InvalidConfiguration(field, value, "expected an integer")


def _parse_bool(field, value):
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise InvalidConfiguration(field, value, "expected true/false")


def _in_range(field, value, low, high):
    if not low <= value <= high:
        raise InvalidConfiguration(field, value, f"must be between {low} and {high}")
    return value


def _validate_multiplier(value):
    return _in_range("intensity_multiplier", _parse_float("intensity_multiplier", value), 0, 100)


def _validate_cap(value):
    return _in_range("intensity_cap", _parse_int("intensity_cap", value), 0, 200)


def _validate_baseline(value):
    return _in_range("baseline_intensity", _parse_int("baseline_intensity", value), 0, 200)


def _validate_combo(value):
    parsed = _parse_int("combo_increment", value)
    if parsed < 0:
        raise InvalidConfiguration("combo_increment", value, "must be >= 0")
    return parsed


def _validate_decay(value):
    parsed = _parse_float("decay_duration_seconds", value)
    # NaN fails both comparisons, so test for the positive case explicitly
    if not parsed > 0 or parsed == float("inf"):
        raise InvalidConfiguration("decay_duration_seconds", value, "must be a positive number of seconds")
    return parsed


VALIDATORS = {
    "intensity_multiplier": _validate_multiplier,
    "intensity_cap": _validate_cap,
    "baseline_intensity": _validate_baseline,
    "combo_increment": _validate_combo,
    "decay_duration_seconds": _validate_decay,
    "punish_all_players": lambda v: _parse_bool("punish_all_players", v),
    "is_local_match": lambda v: _parse_bool("is_local_match", v),
}

ENV_VARS = {
    "intensity_multiplier": "PUNISHER_INTENSITY_MULTIPLIER",
    "intensity_cap": "PUNISHER_INTENSITY_CAP",
    "baseline_intensity": "PUNISHER_BASELINE_INTENSITY",
    "combo_increment": "PUNISHER_COMBO_INCREMENT",
    "decay_duration_seconds": "PUNISHER_DECAY_SECONDS",
    "punish_all_players": "PUNISHER_PUNISH_ALL",
    "is_local_match": "PUNISHER_LOCAL_MATCH",
}


class PunishmentSettings:
    """
    Live, user-editable punishment settings.

    Writers (the control surface) and readers (the controller's event worker)
    live on different threads, so every access goes through a lock and readers
    take a frozen SettingsSnapshot instead of touching fields one at a time.
    """

    def __init__(self, **overrides):
        self._lock = threading.Lock()
        self._current = SettingsSnapshot()
        if overrides:
            self.update(overrides)

    @classmethod
    def from_env(cls):
        """Builds settings from PUNISHER_* environment variables (and .env)."""
        load_dotenv()
        overrides = {}
        for field, env_var in ENV_VARS.items():
            raw = os.getenv(env_var)
            if raw is not None and raw.strip() != "":
                overrides[field] = raw
        return cls(**overrides)

    def snapshot(self):
        with self._lock:
            return self._current

    def update(self, changes=None, **fields):
        """
        Validates and applies the given fields (a dict and/or keywords).

        All-or-nothing: if any field is rejected, InvalidConfiguration is raised
        and none of the changes are applied.

        Returns:
            The new SettingsSnapshot.
        """
        changes = dict(changes or {}, **fields)
        validated = {}
        for field, value in changes.items():
            validator = VALIDATORS.get(field)
            if validator is None:
                raise InvalidConfiguration(field, value, "unknown setting")
            validated[field] = validator(value)

        with self._lock:
            self._current = replace(self._current, **validated)
            return self._current

    def to_dict(self):
        return self.snapshot().to_dict()
