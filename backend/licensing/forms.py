"""Validation rules for each step of the application wizard.

Each step is a pydantic model whose fields carry the HTML form names as
camelCase aliases. `validate_form` runs a model against raw form input
and turns any failure into a list of field-scoped `FieldError`s so the
page can be re-rendered next to the values the user typed.

The date-of-birth rule needs a reference date; it is taken from the
validation context (`{"today": date}`) when present, otherwise today.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .utils.normalize import as_list, clean_phone, clean_postcode, clean_text

BUSINESS_TYPES = (
    "pub",
    "restaurant",
    "bar",
    "nightclub",
    "hotel",
    "off-licence",
    "supermarket",
    "shop",
    "other",
)
LICENSE_TYPES = ("premises", "club", "personal")
ACTIVITIES = (
    "sale-on",
    "sale-off",
    "regulated-entertainment",
    "late-night-refreshment",
    "live-music",
    "recorded-music",
)
DECLARATION_CONFIRMED = "yes"
MINIMUM_AGE = 18

NAME_RE = re.compile(r"^[A-Za-z\s\-'.]+$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
UK_PHONE_RE = re.compile(r"^(\+44|0)[1-9]\d{8,9}$")
UK_POSTCODE_RE = re.compile(r"^[A-Z]{1,2}[0-9R][0-9A-Z]? ?[0-9][A-Z]{2}$", re.IGNORECASE)
COMPANY_NUMBER_RE = re.compile(r"^\d{8}$")
MAX_EMAIL_LENGTH = 254
MAX_EMAIL_LOCAL_LENGTH = 64


@dataclass
class FieldError:
    """A single validation failure tied to a form field."""
    field: str
    message: str
    value: Any = None

    def as_dict(self) -> dict:
        return asdict(self)


def is_email(value: str) -> bool:
    """Check the address shape and the RFC 5321 length caps."""
    value = value or ""
    if len(value) > MAX_EMAIL_LENGTH or not EMAIL_RE.match(value):
        return False
    return len(value.rsplit("@", 1)[0]) <= MAX_EMAIL_LOCAL_LENGTH


def is_uk_phone(value: str) -> bool:
    return bool(UK_PHONE_RE.match(clean_phone(value)))


def is_uk_postcode(value: str) -> bool:
    return bool(UK_POSTCODE_RE.match(clean_text(value)))


def age_on(born: date, today: date) -> int:
    """Whole years between `born` and `today`."""
    return today.year - born.year - ((today.month, today.day) < (born.month, born.day))


def _today(info: ValidationInfo) -> date:
    context = info.context or {}
    return context.get("today") or date.today()


def _required(value: str, label: str, max_length: int, min_length: int = 1) -> str:
    if not value:
        raise ValueError(f"{label} is required")
    if not min_length <= len(value) <= max_length:
        raise ValueError(f"{label} must be between {min_length} and {max_length} characters")
    return value


def _optional(value: str, label: str, max_length: int) -> str:
    if value and len(value) > max_length:
        raise ValueError(f"{label} must not exceed {max_length} characters")
    return value


def _choice(value: str, label: str, choices) -> str:
    if not value:
        raise ValueError(f"{label} is required")
    if value not in choices:
        raise ValueError(f"Select a valid {label.lower()}")
    return value


def _int_in_range(value: str, low: int, high: int, message: str) -> str:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(message)
    if not low <= number <= high:
        raise ValueError(message)
    return str(number)


class StepForm(BaseModel):
    """Base for wizard step forms.

    `labels` maps field names to the human label used in messages.
    Defaults are validated too, so a field missing from the submitted
    form fails the same way an empty one does.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        validate_default=True,
    )

    labels: ClassVar[Dict[str, str]] = {}

    @field_validator("*", mode="before")
    @classmethod
    def _strip(cls, value):
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        if isinstance(value, (list, tuple)):
            return [v.strip() if isinstance(v, str) else v for v in value]
        return value

    @classmethod
    def label(cls, field_name: str) -> str:
        return cls.labels.get(field_name, field_name.replace("_", " ").capitalize())

    def to_form_data(self) -> dict:
        """Return the values keyed by HTML field name."""
        return self.model_dump(by_alias=True)


class PersonalDetailsForm(StepForm):
    first_name: str = ""
    last_name: str = ""
    dob_day: str = ""
    dob_month: str = ""
    dob_year: str = ""
    email: str = ""
    phone_number: str = ""
    address_line1: str = ""
    address_line2: str = ""
    address_town: str = ""
    address_county: str = ""
    address_postcode: str = ""

    labels: ClassVar[Dict[str, str]] = {
        "first_name": "First name",
        "last_name": "Last name",
        "address_line1": "Address line 1",
        "address_line2": "Address line 2",
        "address_town": "Town or city",
        "address_county": "County",
        "address_postcode": "Postcode",
    }

    @field_validator("first_name", "last_name")
    @classmethod
    def _name(cls, value: str, info: ValidationInfo) -> str:
        label = cls.label(info.field_name)
        _required(value, label, 50)
        if not NAME_RE.match(value):
            raise ValueError(f"{label} contains invalid characters")
        return value

    @field_validator("dob_day")
    @classmethod
    def _dob_day(cls, value: str) -> str:
        return _int_in_range(value, 1, 31, "Enter a valid day")

    @field_validator("dob_month")
    @classmethod
    def _dob_month(cls, value: str) -> str:
        return _int_in_range(value, 1, 12, "Enter a valid month")

    @field_validator("dob_year")
    @classmethod
    def _dob_year(cls, value: str, info: ValidationInfo) -> str:
        today = _today(info)
        value = _int_in_range(value, 1900, today.year, "Enter a valid year")
        # day and month are only present here when they passed their own checks
        if "dob_day" not in info.data or "dob_month" not in info.data:
            return value
        message = f"You must be at least {MINIMUM_AGE} years old and provide a valid date of birth"
        try:
            born = date(int(value), int(info.data["dob_month"]), int(info.data["dob_day"]))
        except ValueError:
            raise ValueError(message)
        if born > today or age_on(born, today) < MINIMUM_AGE:
            raise ValueError(message)
        return value

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        if not value:
            raise ValueError("Email address is required")
        if not is_email(value):
            raise ValueError("Enter a valid email address")
        return value.lower()

    @field_validator("phone_number")
    @classmethod
    def _phone(cls, value: str) -> str:
        if not value:
            raise ValueError("Phone number is required")
        if not is_uk_phone(value):
            raise ValueError("Enter a valid UK phone number")
        return clean_phone(value)

    @field_validator("address_line1")
    @classmethod
    def _line1(cls, value: str) -> str:
        return _required(value, cls.label("address_line1"), 100)

    @field_validator("address_line2")
    @classmethod
    def _line2(cls, value: str) -> str:
        return _optional(value, cls.label("address_line2"), 100)

    @field_validator("address_town")
    @classmethod
    def _town(cls, value: str) -> str:
        return _required(value, cls.label("address_town"), 50)

    @field_validator("address_county")
    @classmethod
    def _county(cls, value: str) -> str:
        return _optional(value, cls.label("address_county"), 50)

    @field_validator("address_postcode")
    @classmethod
    def _postcode(cls, value: str) -> str:
        if not value:
            raise ValueError("Postcode is required")
        if not is_uk_postcode(value):
            raise ValueError("Enter a valid UK postcode")
        return clean_postcode(value)


class BusinessDetailsForm(StepForm):
    business_name: str = ""
    company_number: str = ""
    business_type: str = ""
    business_address_line1: str = ""
    business_address_line2: str = ""
    business_address_town: str = ""
    business_address_county: str = ""
    business_address_postcode: str = ""
    business_phone: str = ""
    business_email: str = ""

    labels: ClassVar[Dict[str, str]] = {
        "business_name": "Business name",
        "business_type": "Business type",
        "business_address_line1": "Business address line 1",
        "business_address_line2": "Business address line 2",
        "business_address_town": "Business town or city",
        "business_address_county": "Business county",
    }

    @field_validator("business_name")
    @classmethod
    def _business_name(cls, value: str) -> str:
        return _required(value, cls.label("business_name"), 100, min_length=2)

    @field_validator("company_number")
    @classmethod
    def _company_number(cls, value: str) -> str:
        if value and not COMPANY_NUMBER_RE.match(value):
            raise ValueError("Company registration number must be 8 digits")
        return value

    @field_validator("business_type")
    @classmethod
    def _business_type(cls, value: str) -> str:
        return _choice(value, cls.label("business_type"), BUSINESS_TYPES)

    @field_validator("business_address_line1", "business_address_town")
    @classmethod
    def _required_address(cls, value: str, info: ValidationInfo) -> str:
        max_length = 100 if info.field_name.endswith("line1") else 50
        return _required(value, cls.label(info.field_name), max_length)

    @field_validator("business_address_line2", "business_address_county")
    @classmethod
    def _optional_address(cls, value: str, info: ValidationInfo) -> str:
        max_length = 100 if info.field_name.endswith("line2") else 50
        return _optional(value, cls.label(info.field_name), max_length)

    @field_validator("business_address_postcode")
    @classmethod
    def _postcode(cls, value: str) -> str:
        if not value:
            raise ValueError("Business postcode is required")
        if not is_uk_postcode(value):
            raise ValueError("Enter a valid UK postcode for business address")
        return clean_postcode(value)

    @field_validator("business_phone")
    @classmethod
    def _phone(cls, value: str) -> str:
        if not value:
            raise ValueError("Business phone number is required")
        if not is_uk_phone(value):
            raise ValueError("Enter a valid UK business phone number")
        return clean_phone(value)

    @field_validator("business_email")
    @classmethod
    def _email(cls, value: str) -> str:
        if value and not is_email(value):
            raise ValueError("Enter a valid business email address")
        return value.lower()


class LicenseDetailsForm(StepForm):
    license_type: str = ""
    premises_type: str = ""
    premises_address_line1: str = ""
    premises_address_line2: str = ""
    premises_address_town: str = ""
    premises_address_county: str = ""
    premises_address_postcode: str = ""
    activities: List[str] = Field(default_factory=list)
    monday_hours: str = ""
    tuesday_hours: str = ""
    wednesday_hours: str = ""
    thursday_hours: str = ""
    friday_hours: str = ""
    saturday_hours: str = ""
    sunday_hours: str = ""

    labels: ClassVar[Dict[str, str]] = {
        "license_type": "License type",
        "premises_type": "Premises type",
        "premises_address_line1": "Premises address line 1",
        "premises_address_line2": "Premises address line 2",
        "premises_address_town": "Premises town or city",
        "premises_address_county": "Premises county",
    }

    @field_validator("license_type")
    @classmethod
    def _license_type(cls, value: str) -> str:
        return _choice(value, cls.label("license_type"), LICENSE_TYPES)

    @field_validator("premises_type")
    @classmethod
    def _premises_type(cls, value: str) -> str:
        return _choice(value, cls.label("premises_type"), BUSINESS_TYPES)

    @field_validator("premises_address_line1", "premises_address_town")
    @classmethod
    def _required_address(cls, value: str, info: ValidationInfo) -> str:
        max_length = 100 if info.field_name.endswith("line1") else 50
        return _required(value, cls.label(info.field_name), max_length)

    @field_validator("premises_address_line2", "premises_address_county")
    @classmethod
    def _optional_address(cls, value: str, info: ValidationInfo) -> str:
        max_length = 100 if info.field_name.endswith("line2") else 50
        return _optional(value, cls.label(info.field_name), max_length)

    @field_validator("premises_address_postcode")
    @classmethod
    def _postcode(cls, value: str) -> str:
        if not value:
            raise ValueError("Premises postcode is required")
        if not is_uk_postcode(value):
            raise ValueError("Enter a valid UK postcode for premises address")
        return clean_postcode(value)

    @field_validator("activities", mode="before")
    @classmethod
    def _activities_as_list(cls, value):
        return as_list(value)

    @field_validator("activities")
    @classmethod
    def _activities(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("Select at least one activity")
        for activity in value:
            if activity not in ACTIVITIES:
                raise ValueError("Invalid activity selected")
        return list(dict.fromkeys(value))

    @field_validator(
        "monday_hours",
        "tuesday_hours",
        "wednesday_hours",
        "thursday_hours",
        "friday_hours",
        "saturday_hours",
        "sunday_hours",
    )
    @classmethod
    def _hours(cls, value: str, info: ValidationInfo) -> str:
        day = info.field_name.split("_")[0].capitalize()
        return _optional(value, f"{day} opening hours", 50)


class DeclarationForm(StepForm):
    declaration: str = ""

    @field_validator("declaration")
    @classmethod
    def _declaration(cls, value: str) -> str:
        if not value:
            raise ValueError("You must confirm that the information you have provided is correct")
        if value != DECLARATION_CONFIRMED:
            raise ValueError("You must confirm the declaration to continue")
        return value


def _to_field_error(error: dict) -> FieldError:
    field = ".".join(str(part) for part in error.get("loc", ())) or "form"
    ctx = error.get("ctx") or {}
    if error.get("type") == "value_error" and "error" in ctx:
        message = str(ctx["error"])
    else:
        message = error.get("msg", "Invalid value")
    return FieldError(field=field, message=message, value=error.get("input"))


def validate_form(
    form_cls: Type[StepForm],
    raw: Mapping[str, Any],
    today: Optional[date] = None,
) -> Tuple[Optional[StepForm], List[FieldError]]:
    """Validate `raw` form input against `form_cls`.

    Returns `(form, [])` on success and `(None, errors)` on failure. Never
    raises for bad input.
    """
    try:
        form = form_cls.model_validate(dict(raw), context={"today": today})
    except PydanticValidationError as exc:
        return None, [_to_field_error(e) for e in exc.errors()]
    return form, []
