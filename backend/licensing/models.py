"""SQLModel data models.

This module defines the persisted tables. Detail sub-records are stored
as JSON text; the storage layer itself refuses rows whose blobs are not
valid JSON or whose status is outside the known set, independently of
the checks performed by the service layer.
"""

from typing import Optional
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, Text
from sqlmodel import SQLModel, Field

APPLICATION_STATUSES = ("submitted", "under-review", "approved", "rejected")
FINAL_STATUSES = ("approved", "rejected")
ROLES = ("user", "admin")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _in_list(column: str, values) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class User(SQLModel, table=True):
    """A principal able to sign in.

    Fields:
    - `email`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    - `role`: `user` for applicants, `admin` for reviewers
    """
    __tablename__ = "users"
    __table_args__ = (CheckConstraint(_in_list("role", ROLES), name="ck_users_role"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    role: str = Field(default="user", index=True)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class Application(SQLModel, table=True):
    """A submitted licence application.

    `application_id` is the public identifier; `id` is a surrogate key.
    The three `*_details` columns hold JSON text.
    """
    __tablename__ = "applications"
    __table_args__ = (
        CheckConstraint(_in_list("status", APPLICATION_STATUSES), name="ck_applications_status"),
        CheckConstraint("json_valid(personal_details)", name="ck_applications_personal_json"),
        CheckConstraint("json_valid(business_details)", name="ck_applications_business_json"),
        CheckConstraint("json_valid(license_details)", name="ck_applications_license_json"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    application_id: str = Field(index=True, nullable=False, unique=True)
    personal_details: str = Field(sa_column=Column(Text, nullable=False))
    business_details: str = Field(sa_column=Column(Text, nullable=False))
    license_details: str = Field(sa_column=Column(Text, nullable=False))
    declaration: str = Field(default="yes")
    status: str = Field(default="submitted", index=True)
    submitted_at: datetime
    created_at: datetime = Field(default_factory=_utcnow, index=True)
    updated_at: datetime = Field(default_factory=_utcnow)
