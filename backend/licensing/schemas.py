"""Pydantic schemas for application records, API payloads and principals.

The three detail sub-records are explicit typed structures. Only the
repository layer turns them into JSON text; services and controllers
always handle these models. Field names are snake_case in Python and
camelCase on the wire (`firstName`, `personalDetails`, ...).
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .utils.normalize import as_list


class CamelModel(BaseModel):
    """Base model accepting and emitting camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class DetailRecord(CamelModel):
    """Base for detail sub-records: missing values become empty strings."""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_text(cls, value):
        if value is None:
            return ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class PersonalDetails(DetailRecord):
    first_name: str
    last_name: str
    dob_day: str = ""
    dob_month: str = ""
    dob_year: str = ""
    email: str
    phone_number: str
    address_line1: str = ""
    address_line2: str = ""
    address_town: str = ""
    address_county: str = ""
    address_postcode: str = ""


class BusinessDetails(DetailRecord):
    business_name: str
    company_number: str = ""
    business_type: str
    business_address_line1: str = ""
    business_address_line2: str = ""
    business_address_town: str = ""
    business_address_county: str = ""
    business_address_postcode: str = ""
    business_phone: str = ""
    business_email: str = ""


class OperatingHours(DetailRecord):
    monday: str = ""
    tuesday: str = ""
    wednesday: str = ""
    thursday: str = ""
    friday: str = ""
    saturday: str = ""
    sunday: str = ""


class LicenseDetails(DetailRecord):
    license_type: str
    premises_type: str
    premises_address_line1: str = ""
    premises_address_line2: str = ""
    premises_address_town: str = ""
    premises_address_county: str = ""
    premises_address_postcode: str = ""
    activities: List[str] = Field(default_factory=list)
    operating_hours: OperatingHours = Field(default_factory=OperatingHours)

    @field_validator("activities", mode="before")
    @classmethod
    def _activities_as_list(cls, value):
        return as_list(value)

    @field_validator("operating_hours", mode="before")
    @classmethod
    def _hours_default(cls, value):
        return value or {}


class ApplicationRecord(CamelModel):
    """An application as seen by the service layer and the API."""
    application_id: str
    personal_details: PersonalDetails
    business_details: BusinessDetails
    license_details: LicenseDetails
    declaration: str = "yes"
    status: str = "submitted"
    submitted_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StatusUpdateIn(BaseModel):
    """Body of `PATCH /api/applications/{id}/status`."""
    status: str


class Principal(BaseModel):
    """An authenticated identity bound to a session."""
    id: int
    email: str
    role: str

    def has_role(self, role: str) -> bool:
        return self.role == role
