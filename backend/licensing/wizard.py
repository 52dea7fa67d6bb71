"""Step definitions and session-held state for the application wizard.

The wizard walks an authenticated user through a fixed sequence of
steps. Validated answers for each completed step are stored in the
session under `WIZARD_SESSION_KEY`, one typed form per step, until the
declaration on the summary page turns them into an application.
"""

from __future__ import annotations

import json
from base64 import b64encode
from dataclasses import dataclass
from typing import Dict, List, MutableMapping, Optional, Type

from .forms import (
    BusinessDetailsForm,
    DeclarationForm,
    LicenseDetailsForm,
    PersonalDetailsForm,
    StepForm,
)

WIZARD_SESSION_KEY = "wizard"
# encoded session payload; leaves room for the signature and cookie
# attributes under the 4096-byte browser limit
MAX_SESSION_BYTES = 3800


@dataclass(frozen=True)
class WizardStep:
    slug: str
    title: str
    form: Type[StepForm]
    template: str
    # attribute of WizardState holding the answers; None for the summary step
    key: Optional[str] = None
    event: Optional[str] = None

    @property
    def path(self) -> str:
        return f"/{self.slug}"


PERSONAL = WizardStep(
    "personal-details", "Personal details", PersonalDetailsForm, "personal_details.html",
    key="personal", event="personal_details_submitted",
)
BUSINESS = WizardStep(
    "business-details", "Business details", BusinessDetailsForm, "business_details.html",
    key="business", event="business_details_submitted",
)
LICENSE = WizardStep(
    "license-details", "License details", LicenseDetailsForm, "license_details.html",
    key="license", event="license_details_submitted",
)
SUMMARY = WizardStep("summary", "Check your answers", DeclarationForm, "summary.html")

STEPS = (PERSONAL, BUSINESS, LICENSE, SUMMARY)
DETAIL_STEPS = STEPS[:-1]


def next_step(step: WizardStep) -> WizardStep:
    index = STEPS.index(step)
    return STEPS[min(index + 1, len(STEPS) - 1)]


@dataclass
class WizardState:
    """Typed partial application: one validated form per completed step."""
    personal: Optional[PersonalDetailsForm] = None
    business: Optional[BusinessDetailsForm] = None
    license: Optional[LicenseDetailsForm] = None

    @classmethod
    def load(cls, session: MutableMapping) -> "WizardState":
        """Rebuild state from the session.

        Each step is stored as a list of values in field order. Session
        cookies are signed, so stored answers are trusted and not
        validated a second time; a list that no longer matches the form's
        fields leaves the step incomplete.
        """
        raw = session.get(WIZARD_SESSION_KEY) or {}
        state = cls()
        for step in DETAIL_STEPS:
            values = raw.get(step.key)
            names = list(step.form.model_fields)
            if isinstance(values, list) and len(values) == len(names):
                setattr(state, step.key, step.form.model_construct(**dict(zip(names, values))))
        return state

    def _payload(self) -> Dict[str, List[object]]:
        payload = {}
        for step in DETAIL_STEPS:
            form = getattr(self, step.key)
            if form is not None:
                data = form.model_dump(mode="json")
                payload[step.key] = [data[name] for name in step.form.model_fields]
        return payload

    def save(self, session: MutableMapping) -> bool:
        """Store the answers unless the session cookie would outgrow its budget.

        Returns False, leaving the session untouched, when it would.
        """
        payload = self._payload()
        if encoded_size({**session, WIZARD_SESSION_KEY: payload}) > MAX_SESSION_BYTES:
            return False
        session[WIZARD_SESSION_KEY] = payload
        return True

    @staticmethod
    def clear(session: MutableMapping) -> None:
        session.pop(WIZARD_SESSION_KEY, None)

    def merge(self, step: WizardStep, form: StepForm) -> None:
        setattr(self, step.key, form)

    def is_complete(self, step: WizardStep) -> bool:
        if step.key is None:
            return False
        return getattr(self, step.key) is not None

    def first_incomplete(self) -> WizardStep:
        for step in DETAIL_STEPS:
            if not self.is_complete(step):
                return step
        return SUMMARY

    def can_visit(self, step: WizardStep) -> bool:
        """A step is reachable once every step before it is complete."""
        return STEPS.index(step) <= STEPS.index(self.first_incomplete())

    def step_data(self, step: WizardStep) -> Dict[str, object]:
        form = getattr(self, step.key) if step.key else None
        return form.to_form_data() if form is not None else {}

    def as_form_data(self) -> Dict[str, object]:
        """Flat union of every completed step keyed by HTML field name."""
        data: Dict[str, object] = {}
        for step in DETAIL_STEPS:
            data.update(self.step_data(step))
        return data


def encoded_size(session: MutableMapping) -> int:
    """Size of `session` as the signed-cookie middleware encodes it, before signing."""
    return len(b64encode(json.dumps(dict(session)).encode("utf-8")))
