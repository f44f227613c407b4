import re
from datetime import datetime, timezone
from typing import Any, Optional


class TypeCoercer:
    NULL_VARIANTS = {"null", "none", "nil", "", "undefined"}
    BOOL_TRUE_VARIANTS = {"true", "yes", "1"}
    BOOL_FALSE_VARIANTS = {"false", "no", "0"}

    NUMERIC_PATTERN = re.compile(r'^-?\d+(\.\d+)?$')

    DATETIME_FORMATS = [
        "%Y-%m-%dT%H:%M:%SZ",
        "%Y-%m-%dT%H:%M:%S.%fZ",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d",
        "%d/%m/%Y",
        "%Y/%m/%d",
    ]

    @classmethod
    def is_null(cls, value: Any) -> bool:
        if value is None:
            return True
        return isinstance(value, str) and value.strip().lower() in cls.NULL_VARIANTS

    @classmethod
    def to_bool(cls, value: Any, default: bool = False) -> bool:
        if cls.is_null(value):
            return default

        if isinstance(value, bool):
            return value

        if isinstance(value, (int, float)):
            return value != 0

        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in cls.BOOL_TRUE_VARIANTS:
                return True
            if lowered in cls.BOOL_FALSE_VARIANTS:
                return False

        return default

    @classmethod
    def to_int(cls, value: Any, default: Optional[int] = None) -> Optional[int]:
        if cls.is_null(value) or isinstance(value, bool):
            return default

        if isinstance(value, int):
            return value

        if isinstance(value, float):
            return int(value)

        if isinstance(value, str):
            value = value.strip()
            try:
                return int(value)
            except ValueError:
                try:
                    return int(float(value))
                except ValueError:
                    return default

        return default

    @classmethod
    def to_timestamp(cls, value: Any, default: Optional[int] = None) -> Optional[int]:
        """
        Coerce a timestamp to integer epoch seconds.

        Accepts ints and floats, numeric strings, datetime strings in
        ISO-8601 or one of DATETIME_FORMATS (naive values read as UTC),
        datetime objects, and 64-bit values split into {"low", "high"}.
        """
        if cls.is_null(value) or isinstance(value, bool):
            return default

        if isinstance(value, (int, float)):
            return int(value)

        if isinstance(value, datetime):
            return cls._epoch(value)

        if isinstance(value, dict) and "low" in value:
            low = cls.to_int(value.get("low"), 0) & 0xFFFFFFFF
            high = cls.to_int(value.get("high"), 0)
            return (high << 32) | low

        if isinstance(value, str):
            value = value.strip()
            if cls.NUMERIC_PATTERN.match(value):
                return int(float(value))
            dt = cls._parse_datetime(value)
            if dt is not None:
                return cls._epoch(dt)

        return default

    @classmethod
    def _parse_datetime(cls, value: str) -> Optional[datetime]:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
        for fmt in cls.DATETIME_FORMATS:
            try:
                return datetime.strptime(value, fmt)
            except ValueError:
                continue
        return None

    @staticmethod
    def _epoch(dt: datetime) -> int:
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp())
