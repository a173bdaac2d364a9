"""Team scheduling strategies."""

from __future__ import annotations

from enum import Enum


class Strategy(str, Enum):
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"
    PIPELINE = "pipeline"
    COLLABORATIVE = "collaborative"
    ROLE_BASED = "role_based"

    @classmethod
    def parse(cls, value: "str | Strategy") -> "Strategy":
        if isinstance(value, Strategy):
            return value
        key = str(value).strip().lower().replace("-", "_")
        try:
            return cls(key)
        except ValueError:
            choices = ", ".join(item.value for item in cls)
            raise ValueError(f"Unknown strategy '{value}' (expected one of: {choices})") from None
