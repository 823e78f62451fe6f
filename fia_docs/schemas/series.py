from __future__ import annotations

from enum import Enum


class Series(str, Enum):
    F1 = "f1"
    F2 = "f2"
    F3 = "f3"

    @classmethod
    def _missing_(cls, value: object) -> Series:
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        # Unknown tokens decode to F1 rather than failing; rows written by older tools rely on it.
        return cls.F1

    def __str__(self) -> str:
        return self.value


SERIES_ORDER: tuple[Series, ...] = (Series.F1, Series.F2, Series.F3)
