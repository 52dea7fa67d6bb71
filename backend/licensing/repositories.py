"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
applications). `ApplicationRepository` is the only place where detail
sub-records are converted to and from JSON text; callers exchange
`ApplicationRecord` models with it.

Storage failures are raised as `StorageError` subclasses so callers can
tell a duplicate identifier or a corrupt row apart from a generic fault.
"""

import json
import logging
from datetime import datetime, timezone
from typing import List, Optional, Type

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from . import models
from .schemas import ApplicationRecord, BusinessDetails, DetailRecord, LicenseDetails, PersonalDetails

logger = logging.getLogger("licensing.repositories")


class StorageError(Exception):
    """Generic storage failure."""
    code = "STORAGE_ERROR"


class DuplicateApplicationError(StorageError):
    """An application with the same `application_id` already exists."""
    code = "UNIQUE_VIOLATION"


class ConstraintViolationError(StorageError):
    """A row was refused by a schema constraint (status domain, JSON validity)."""
    code = "CONSTRAINT_VIOLATION"


class CorruptRecordError(StorageError):
    """A stored detail blob could not be turned back into its sub-record."""
    code = "CORRUPT_DATA"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dump_blob(record: DetailRecord, column: str) -> str:
    """Serialise a sub-record, refusing anything that does not round-trip."""
    payload = record.model_dump(mode="json", by_alias=True)
    try:
        text = json.dumps(payload, allow_nan=False, ensure_ascii=False)
    except ValueError as exc:
        raise ConstraintViolationError(f"{column} is not serialisable: {exc}") from exc
    if json.loads(text) != payload:
        raise ConstraintViolationError(f"{column} does not survive a JSON round trip")
    return text


def _load_blob(text: str, model_cls: Type[DetailRecord], column: str, application_id: str) -> DetailRecord:
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise CorruptRecordError(f"{column} of application {application_id} is not valid JSON") from exc
    if not isinstance(data, dict):
        raise CorruptRecordError(f"{column} of application {application_id} is not an object")
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as exc:
        raise CorruptRecordError(f"{column} of application {application_id} has an unexpected shape") from exc


def _to_record(row: models.Application) -> ApplicationRecord:
    return ApplicationRecord(
        application_id=row.application_id,
        personal_details=_load_blob(row.personal_details, PersonalDetails, "personal_details", row.application_id),
        business_details=_load_blob(row.business_details, BusinessDetails, "business_details", row.application_id),
        license_details=_load_blob(row.license_details, LicenseDetails, "license_details", row.application_id),
        declaration=row.declaration,
        status=row.status,
        submitted_at=row.submitted_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _classify_integrity_error(exc: IntegrityError) -> StorageError:
    message = str(exc.orig).lower()
    if "unique" in message and "application_id" in message:
        return DuplicateApplicationError("Duplicate application_id")
    return ConstraintViolationError(f"Constraint violated: {exc.orig}")


class UserRepository:
    """CRUD operations for `User` principals."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)


class ApplicationRepository:
    """Persistence for applications and the JSON mapping of their details."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, record: ApplicationRecord) -> ApplicationRecord:
        """Insert `record` as a new row.

        Raises `DuplicateApplicationError` when the identifier is taken and
        `ConstraintViolationError` when the row breaks a schema constraint.
        """
        row = models.Application(
            application_id=record.application_id,
            personal_details=_dump_blob(record.personal_details, "personal_details"),
            business_details=_dump_blob(record.business_details, "business_details"),
            license_details=_dump_blob(record.license_details, "license_details"),
            declaration=record.declaration,
            status=record.status,
            submitted_at=record.submitted_at,
        )
        self.session.add(row)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise _classify_integrity_error(exc) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageError(f"Failed to create application: {exc}") from exc
        self.session.refresh(row)
        return _to_record(row)

    def get(self, application_id: str) -> Optional[ApplicationRecord]:
        """Return the application with `application_id`, or None."""
        stmt = select(models.Application).where(models.Application.application_id == application_id)
        try:
            row = self.session.exec(stmt).first()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to get application: {exc}") from exc
        return _to_record(row) if row else None

    def list_recent(self, limit: int = 50, offset: int = 0, status: Optional[str] = None) -> List[ApplicationRecord]:
        """Return a page of applications, newest first, optionally filtered by status."""
        stmt = select(models.Application)
        if status:
            stmt = stmt.where(models.Application.status == status)
        stmt = stmt.order_by(models.Application.created_at.desc(), models.Application.id.desc())
        stmt = stmt.offset(offset).limit(limit)
        try:
            rows = self.session.exec(stmt).all()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to get applications: {exc}") from exc
        return [_to_record(r) for r in rows]

    def update_status(self, application_id: str, status: str) -> int:
        """Set the status of one application; return the number of rows changed."""
        stmt = (
            update(models.Application)
            .where(models.Application.application_id == application_id)
            .values(status=status, updated_at=_utcnow())
        )
        return self._execute_write(stmt, "update application status")

    def delete(self, application_id: str) -> int:
        """Delete one application; return the number of rows removed."""
        stmt = delete(models.Application).where(models.Application.application_id == application_id)
        return self._execute_write(stmt, "delete application")

    def count_unfinalized(self) -> int:
        """Count applications that have not reached a final status."""
        stmt = select(func.count()).select_from(models.Application).where(
            models.Application.status.not_in(models.FINAL_STATUSES)
        )
        return self.session.exec(stmt).one()

    def delete_unfinalized(self) -> int:
        """Remove every application not in a final status (maintenance only)."""
        stmt = delete(models.Application).where(models.Application.status.not_in(models.FINAL_STATUSES))
        return self._execute_write(stmt, "delete unfinalized applications")

    def _execute_write(self, stmt, action: str) -> int:
        try:
            result = self.session.connection().execute(stmt)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise _classify_integrity_error(exc) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageError(f"Failed to {action}: {exc}") from exc
        logger.debug("%s affected %d row(s)", action, result.rowcount)
        return result.rowcount
