"""
Typed access to the `system_settings` key/value table.

Incentive thresholds are tuned by administrators at runtime, so they live
in the database rather than in environment settings. Every key has a
code default used when the row is missing or unparsable.
"""
import logging
from typing import Any, Optional

from app.core.database import get_supabase_client
from app.core.exceptions import ValidationError


logger = logging.getLogger(__name__)


POINTS_DEFAULTS: dict[str, int] = {
    "base_points": 1000,
    "redlist_penalty": 50,
    "monthly_bonus": 100,
    "warning_redlist_count": 3,
    "severe_redlist_count": 5,
}

COIN_DEFAULTS: dict[str, float] = {
    "coin_per_optimum_file": 10,
    "coin_per_excess_file": 5,
    "coin_redlist_penalty": 20,
    "red_flag_deduction": 20,
    "coin_threshold_warning": 100,
    "red_flag_threshold": 3,
    "optimum_hours_per_day": 8,
    "files_per_day_optimum": 5,
    "high_volume_threshold": 10,
    "high_momentum_threshold": 5,
}


class ConfigStore:
    """Reads thresholds from system_settings with typed defaults."""

    def __init__(self, db=None):
        self._db = db

    @property
    def db(self):
        return self._db or get_supabase_client()

    def get(self, key: str, default: Any) -> Any:
        try:
            raw = self.db.get_system_setting(key)
        except Exception as e:
            logger.warning(f"Could not read setting {key}, using default {default}: {e}")
            return default

        if raw is None or raw == "":
            return default

        try:
            return type(default)(raw)
        except (TypeError, ValueError):
            logger.warning(f"Invalid value {raw!r} for setting {key}, using default {default}")
            return default

    def set(self, key: str, value: Any, updated_by: Optional[str] = None) -> dict:
        """
        Store a threshold. Only known keys are accepted, and the value must
        parse as the type of the key's default.
        """
        if key in POINTS_DEFAULTS:
            cast = int
        elif key in COIN_DEFAULTS:
            cast = float
        else:
            raise ValidationError(f"Unknown setting '{key}'", field="key", value=key)

        try:
            parsed = cast(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Invalid value {value!r} for setting {key}",
                field="value",
                value=value
            ) from e
        if parsed < 0:
            raise ValidationError(f"Setting {key} cannot be negative", field="value", value=value)

        row = self.db.upsert_system_setting({
            "key": key,
            "value": parsed,
            "updated_by_id": updated_by,
        })
        logger.info(f"Setting {key} set to {parsed} by {updated_by or 'system'}")
        return row

    def get_int(self, key: str, default: int) -> int:
        return int(self.get(key, int(default)))

    def get_float(self, key: str, default: float) -> float:
        return float(self.get(key, float(default)))

    def points_config(self) -> dict[str, int]:
        return {key: self.get_int(key, value) for key, value in POINTS_DEFAULTS.items()}

    def coin_config(self) -> dict[str, float]:
        return {key: self.get_float(key, value) for key, value in COIN_DEFAULTS.items()}
