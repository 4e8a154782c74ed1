"""
Voter data models.

Represents a single registration on the roll together with the scores and
flags the intake scorers attach to it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import Optional, Any

from .states import RegistrationStatus


@dataclass
class AddressComponents:
    """Raw address as submitted by the applicant."""

    house_number: str = ""
    street: str = ""
    village_city: str = ""
    district: str = ""
    state: str = ""
    pin_code: str = ""

    def __post_init__(self):
        self.house_number = (self.house_number or "").strip()
        self.street = (self.street or "").strip()
        self.village_city = (self.village_city or "").strip()
        self.district = (self.district or "").strip()
        self.state = (self.state or "").strip()
        self.pin_code = (self.pin_code or "").strip()

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AddressComponents":
        return cls(**{
            k: (str(v) if v is not None else "") for k, v in data.items()
            if k in cls.__dataclass_fields__
        })


@dataclass
class Voter:
    """
    Core voter registration record.

    Records are never deleted. Deactivation (for example on a deceased
    match) sets ``is_active`` to False; the registration status keeps
    tracking the review outcome independently.
    """

    voter_id: str = ""

    # Personal information
    name: str = ""
    surname: str = ""
    father_name: str = ""
    mother_name: str = ""
    guardian_name: str = ""
    date_of_birth: Optional[date] = None
    gender: str = ""

    # Identity keys used by the duplicate scan
    national_id: str = ""
    email: str = ""
    mobile_number: str = ""

    # Address
    address: AddressComponents = field(default_factory=AddressComponents)
    normalized_address: str = ""
    address_hash: str = ""

    # Scores written by the intake scorers
    address_quality_score: Optional[float] = None
    name_quality_score: Optional[float] = None
    phonetic_code: str = ""
    validation_flags: set[str] = field(default_factory=set)

    # Lifecycle
    registration_status: RegistrationStatus = RegistrationStatus.PENDING_REVIEW
    review_reason: str = ""
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """Clean data after initialization."""
        self.name = re.sub(r"\s+", " ", (self.name or "").strip())
        self.father_name = (self.father_name or "").strip()
        self.mother_name = (self.mother_name or "").strip()
        self.guardian_name = (self.guardian_name or "").strip()
        self.national_id = (self.national_id or "").strip().upper()
        self.email = (self.email or "").strip().lower()
        self.mobile_number = re.sub(r"[^\d+]", "", self.mobile_number or "")
        if isinstance(self.address, dict):
            self.address = AddressComponents.from_dict(self.address)
        if isinstance(self.registration_status, str):
            self.registration_status = RegistrationStatus(self.registration_status)
        if isinstance(self.date_of_birth, str):
            self.date_of_birth = date.fromisoformat(self.date_of_birth) if self.date_of_birth else None
        self.validation_flags = set(self.validation_flags or ())

        if not self.surname and self.name:
            self.surname = self.name.split(" ")[-1]
        self.surname = self.surname.strip()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["address"] = self.address.to_dict()
        data["registration_status"] = self.registration_status.value
        data["validation_flags"] = sorted(self.validation_flags)
        data["date_of_birth"] = self.date_of_birth.isoformat() if self.date_of_birth else None
        for key in ("created_at", "updated_at"):
            value = getattr(self, key)
            data[key] = value.isoformat() if value else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Voter":
        """Create Voter from dictionary."""
        return cls(**{
            k: v for k, v in data.items()
            if k in cls.__dataclass_fields__
        })

    @property
    def is_countable(self) -> bool:
        """Whether the registration counts toward address clusters."""
        return self.is_active and self.registration_status != RegistrationStatus.REJECTED
