"""
Name frequency lookup rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class NameFrequency:
    """How common a name token is for a given role (0..1)."""
    name_token: str
    name_type: str
    frequency_score: float
    region: str = "all"
    language: str = "en"

    def __post_init__(self):
        self.name_token = (self.name_token or "").strip().lower()
        self.frequency_score = max(0.0, min(1.0, float(self.frequency_score)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name_token": self.name_token,
            "name_type": self.name_type,
            "frequency_score": self.frequency_score,
            "region": self.region,
            "language": self.language,
        }
