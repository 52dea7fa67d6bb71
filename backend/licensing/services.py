"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories.
Services are intentionally thin: they validate input completely, then
perform a single persistence call, so a rejected request never leaves a
partial record behind.

Every public `ApplicationService` operation raises only the classes
from `errors`: `ValidationError` for bad input, `NotFoundError` for a
missing application, and `AppError` for anything unexpected further down.
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Type

from passlib.context import CryptContext
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .errors import AppError, NotFoundError, ValidationError
from .forms import DECLARATION_CONFIRMED
from .schemas import ApplicationRecord, BusinessDetails, DetailRecord, LicenseDetails, PersonalDetails, Principal
from .utils.normalize import clean_email, clean_phone, clean_postcode, clean_text

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
MAX_ID_ATTEMPTS = 3

logger = logging.getLogger("licensing.services")

REQUIRED_FIELDS = {
    "personalDetails": ("firstName", "lastName", "email", "phoneNumber"),
    "businessDetails": ("businessName", "businessType"),
    "licenseDetails": ("licenseType", "premisesType"),
}
SECTION_LABELS = {
    "personalDetails": "Personal details",
    "businessDetails": "Business details",
    "licenseDetails": "License details",
}
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
SECTION_MODELS = {
    "personalDetails": PersonalDetails,
    "businessDetails": BusinessDetails,
    "licenseDetails": LicenseDetails,
}


@contextmanager
def _wrap_failures(message: str, code: str):
    """Re-raise anything that is not already an `AppError` as an internal error."""
    try:
        yield
    except AppError:
        raise
    except Exception as exc:
        logger.exception("%s (%s)", message, getattr(exc, "code", type(exc).__name__))
        raise AppError(message, code) from exc


class AuthService:
    """Credential checks and seeding of the training principals."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    @staticmethod
    def hash_password(password: str) -> str:
        return PWD_CTX.hash(password)

    @staticmethod
    def verify_password(password: str, password_hash: Optional[str]) -> bool:
        if not password or not password_hash:
            return False
        try:
            return PWD_CTX.verify(password, password_hash)
        except (ValueError, TypeError):
            # unknown or malformed hash format
            return False

    def ensure_user(self, email: str, password: str, role: str) -> models.User:
        """Create the principal unless one with `email` already exists."""
        existing = self.user_repo.get_by_email(email)
        if existing:
            return existing
        user = models.User(email=email, password_hash=self.hash_password(password), role=role)
        try:
            return self.user_repo.create(user)
        except IntegrityError:
            # another process seeded the same email first
            self.session.rollback()
            return self.user_repo.get_by_email(email)

    def ensure_default_users(self) -> None:
        self.ensure_user(settings.TRAINING_USER_EMAIL, settings.TRAINING_USER_PASSWORD, "user")
        self.ensure_user(settings.TRAINING_ADMIN_EMAIL, settings.TRAINING_ADMIN_PASSWORD, "admin")
        logger.info("training principals ensured")

    def authenticate(self, email: str, password: str, role: str) -> Optional[Principal]:
        """Return the `Principal` for valid credentials of `role`, else None."""
        user = self.user_repo.get_by_email(clean_email(email))
        if not user or user.role != role:
            return None
        if not self.verify_password(password, user.password_hash):
            return None
        return Principal(id=user.id, email=user.email, role=user.role)


def _detail(field: str, message: str, value: Any = None) -> Dict[str, Any]:
    return {"field": field, "message": message, "value": value}


def _extract(model_cls: Type[DetailRecord], flat: Mapping[str, Any], skip=()) -> Dict[str, Any]:
    """Pick the fields of `model_cls` out of flat wizard data by their wire names."""
    return {
        field.alias: flat.get(field.alias)
        for name, field in model_cls.model_fields.items()
        if name not in skip
    }


def extract_personal_details(flat: Mapping[str, Any]) -> Dict[str, Any]:
    return _extract(PersonalDetails, flat)


def extract_business_details(flat: Mapping[str, Any]) -> Dict[str, Any]:
    return _extract(BusinessDetails, flat)


def extract_license_details(flat: Mapping[str, Any]) -> Dict[str, Any]:
    details = _extract(LicenseDetails, flat, skip=("operating_hours",))
    details["operatingHours"] = {day: flat.get(f"{day}Hours") or "" for day in WEEKDAYS}
    return details


class ApplicationService:
    """Create, read and transition licence applications."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.ApplicationRepository(session)

    def create_application(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Validate, sanitise and persist a complete application payload.

        `payload` carries `personalDetails`, `businessDetails`,
        `licenseDetails` and `declaration`. Returns the new
        `{applicationId, status, submittedAt}`.
        """
        self._validate_application_data(payload)
        record = ApplicationRecord(
            application_id="",
            personal_details=self._sanitize_personal(payload["personalDetails"]),
            business_details=self._sanitize_business(payload["businessDetails"]),
            license_details=self._sanitize_license(payload["licenseDetails"]),
            declaration=DECLARATION_CONFIRMED,
            status="submitted",
            submitted_at=datetime.now(timezone.utc),
        )
        with _wrap_failures("Failed to create application", "CREATE_APPLICATION_ERROR"):
            for attempt in range(1, MAX_ID_ATTEMPTS + 1):
                record.application_id = str(uuid.uuid4())
                try:
                    self.repo.create(record)
                    break
                except repositories.DuplicateApplicationError:
                    logger.warning("application id collision on attempt %d, regenerating", attempt)
            else:
                raise AppError("Failed to create application", "CREATE_APPLICATION_ERROR")
        logger.info("application created %s", record.application_id)
        return {
            "applicationId": record.application_id,
            "status": record.status,
            "submittedAt": record.submitted_at.isoformat(),
        }

    def process_application_from_form_data(self, session_state: Mapping[str, Any], declaration: Any) -> Dict[str, Any]:
        """Turn flat wizard answers into an application.

        The declaration is checked here as well as on the summary form.
        """
        if not session_state:
            raise ValidationError("No form data provided")
        if declaration != DECLARATION_CONFIRMED:
            raise ValidationError(
                "Declaration must be confirmed",
                details=[_detail("declaration", "Declaration must be confirmed", declaration)],
            )
        payload = {
            "personalDetails": extract_personal_details(session_state),
            "businessDetails": extract_business_details(session_state),
            "licenseDetails": extract_license_details(session_state),
            "declaration": declaration,
        }
        return self.create_application(payload)

    def get_application(self, application_id: Optional[str]) -> ApplicationRecord:
        if not application_id or not str(application_id).strip():
            raise ValidationError(
                "Application ID is required",
                details=[_detail("applicationId", "Application ID is required", application_id)],
            )
        with _wrap_failures("Failed to retrieve application", "GET_APPLICATION_ERROR"):
            record = self.repo.get(application_id)
        if record is None:
            raise NotFoundError("Application")
        return record

    def get_applications(self, limit: int = 50, offset: int = 0, status: Optional[str] = None) -> Dict[str, Any]:
        """Return a page of applications plus `{limit, offset, count}`."""
        if not _is_int(limit) or not 1 <= limit <= 100:
            raise ValidationError(
                "Limit must be between 1 and 100",
                details=[_detail("limit", "Limit must be between 1 and 100", limit)],
            )
        if not _is_int(offset) or offset < 0:
            raise ValidationError(
                "Offset must be non-negative",
                details=[_detail("offset", "Offset must be non-negative", offset)],
            )
        if status and status not in models.APPLICATION_STATUSES:
            raise ValidationError(_invalid_status_message(), details=[_detail("status", _invalid_status_message(), status)])
        with _wrap_failures("Failed to retrieve applications", "GET_APPLICATIONS_ERROR"):
            applications = self.repo.list_recent(limit=limit, offset=offset, status=status or None)
        return {
            "applications": applications,
            "pagination": {"limit": limit, "offset": offset, "count": len(applications)},
        }

    def update_application_status(self, application_id: str, status: str) -> Dict[str, Any]:
        """Move an application to `status`.

        The status is checked before the application is looked up. A
        concurrent delete between the lookup and the update is reported
        as not found.
        """
        if status not in models.APPLICATION_STATUSES:
            raise ValidationError(_invalid_status_message(), details=[_detail("status", _invalid_status_message(), status)])
        self.get_application(application_id)
        with _wrap_failures("Failed to update application status", "UPDATE_STATUS_ERROR"):
            changes = self.repo.update_status(application_id, status)
        if changes == 0:
            raise NotFoundError("Application")
        logger.info("application %s moved to %s", application_id, status)
        return {"applicationId": application_id, "status": status, "changes": changes}

    def delete_application(self, application_id: str) -> Dict[str, Any]:
        self.get_application(application_id)
        with _wrap_failures("Failed to delete application", "DELETE_APPLICATION_ERROR"):
            changes = self.repo.delete(application_id)
        if changes == 0:
            raise NotFoundError("Application")
        logger.info("application %s deleted", application_id)
        return {"applicationId": application_id, "changes": changes}

    def _validate_application_data(self, data: Any) -> None:
        """Check the payload shape, collecting every problem before raising."""
        if not isinstance(data, Mapping):
            raise ValidationError("Application data must be an object")
        details: List[Dict[str, Any]] = []
        for section, required in REQUIRED_FIELDS.items():
            block = data.get(section)
            if not isinstance(block, Mapping):
                details.append(_detail(section, f"{section} is required and must be an object", block))
                continue
            for field in required:
                value = block.get(field)
                if value is None or (isinstance(value, str) and not value.strip()):
                    details.append(_detail(f"{section}.{field}", f"{SECTION_LABELS[section]}: {field} is required", value))
            details.extend(_type_problems(section, block))
        declaration = data.get("declaration")
        if declaration is not True and declaration != DECLARATION_CONFIRMED:
            details.append(_detail("declaration", "Declaration must be confirmed", declaration))
        if details:
            logger.info("application rejected: %d validation problem(s)", len(details))
            raise ValidationError(details[0]["message"], details=details)

    def _sanitize_personal(self, details: Mapping[str, Any]) -> PersonalDetails:
        data = dict(details)
        data.update(
            firstName=clean_text(details.get("firstName")),
            lastName=clean_text(details.get("lastName")),
            email=clean_email(details.get("email")),
            phoneNumber=clean_phone(details.get("phoneNumber")),
            addressLine1=clean_text(details.get("addressLine1")),
            addressLine2=clean_text(details.get("addressLine2")),
            addressTown=clean_text(details.get("addressTown")),
            addressCounty=clean_text(details.get("addressCounty")),
            addressPostcode=clean_postcode(details.get("addressPostcode")),
        )
        return _typed(PersonalDetails, data, "personalDetails")

    def _sanitize_business(self, details: Mapping[str, Any]) -> BusinessDetails:
        data = dict(details)
        data.update(
            businessName=clean_text(details.get("businessName")),
            companyNumber=clean_text(details.get("companyNumber")),
            businessAddressLine1=clean_text(details.get("businessAddressLine1")),
            businessAddressLine2=clean_text(details.get("businessAddressLine2")),
            businessAddressTown=clean_text(details.get("businessAddressTown")),
            businessAddressCounty=clean_text(details.get("businessAddressCounty")),
            businessAddressPostcode=clean_postcode(details.get("businessAddressPostcode")),
            businessPhone=clean_phone(details.get("businessPhone")),
            businessEmail=clean_email(details.get("businessEmail")),
        )
        return _typed(BusinessDetails, data, "businessDetails")

    def _sanitize_license(self, details: Mapping[str, Any]) -> LicenseDetails:
        data = dict(details)
        data.update(
            premisesAddressLine1=clean_text(details.get("premisesAddressLine1")),
            premisesAddressLine2=clean_text(details.get("premisesAddressLine2")),
            premisesAddressTown=clean_text(details.get("premisesAddressTown")),
            premisesAddressCounty=clean_text(details.get("premisesAddressCounty")),
            premisesAddressPostcode=clean_postcode(details.get("premisesAddressPostcode")),
        )
        return _typed(LicenseDetails, data, "licenseDetails")


def _typed(model_cls: Type[DetailRecord], data: Dict[str, Any], section: str) -> DetailRecord:
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as exc:
        details = [
            _detail(".".join([section, *(str(p) for p in e["loc"])]), e["msg"], e.get("input"))
            for e in exc.errors()
        ]
        raise ValidationError(f"{SECTION_LABELS[section]} are invalid", details=details) from exc


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool)


def _type_problems(section: str, block: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """Flag known fields whose value is not text, a number, or null.

    `activities` may also be a list of text and `operatingHours` an object
    of day to text.
    """
    label = SECTION_LABELS[section]
    problems = []
    for name, field in SECTION_MODELS[section].model_fields.items():
        alias = field.alias or name
        value = block.get(alias)
        path = f"{section}.{alias}"
        if value is None or value == "":
            continue
        if alias == "activities":
            items = value if isinstance(value, list) else [value]
            if not all(isinstance(item, str) for item in items):
                problems.append(_detail(path, f"{label}: {alias} must be text or a list of text", value))
        elif alias == "operatingHours":
            if not isinstance(value, Mapping):
                problems.append(_detail(path, f"{label}: {alias} must be an object", value))
                continue
            for day, hours in value.items():
                if hours is not None and not _is_scalar(hours):
                    problems.append(_detail(f"{path}.{day}", f"{label}: {alias}.{day} must be text", hours))
        elif not _is_scalar(value):
            problems.append(_detail(path, f"{label}: {alias} must be text", value))
    return problems


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _invalid_status_message() -> str:
    return f"Invalid status. Must be one of: {', '.join(models.APPLICATION_STATUSES)}"
