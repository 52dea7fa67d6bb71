from pathlib import Path
import os
import re

TEST_DB = Path(__file__).resolve().parents[1] / "test.db"
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB}"
os.environ.setdefault("SESSION_SECRET", "test-session-secret")
if TEST_DB.exists():
    TEST_DB.unlink()

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from licensing.database import create_db_and_tables, drop_db_and_tables, engine
from licensing.main import app
from licensing.services import AuthService
from licensing.utils.rate_limit import limiter

CSRF_RE = re.compile(r'name="_csrf" value="([0-9a-f]+)"')

USER_EMAIL = "user@example.com"
USER_PASSWORD = "password123"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin123"


@pytest.fixture(autouse=True)
def reset_db():
    """Give every test an empty schema with the training principals seeded."""
    drop_db_and_tables()
    create_db_and_tables()
    with Session(engine) as session:
        AuthService(session).ensure_default_users()
    limiter.reset()
    yield


@pytest.fixture
def db():
    with Session(engine) as session:
        yield session


@pytest.fixture
def client():
    return TestClient(app)


def extract_csrf(html: str) -> str:
    match = CSRF_RE.search(html)
    assert match, "page has no CSRF field"
    return match.group(1)


@pytest.fixture
def csrf():
    """Return a function fetching `path` and returning its CSRF token."""
    def fetch(client: TestClient, path: str) -> str:
        r = client.get(path)
        assert r.status_code == 200
        return extract_csrf(r.text)
    return fetch


@pytest.fixture
def user_client(client, csrf):
    token = csrf(client, "/login")
    r = client.post("/login", data={"email": USER_EMAIL, "password": USER_PASSWORD, "_csrf": token}, follow_redirects=False)
    assert r.status_code == 303
    return client


@pytest.fixture
def admin_client(client, csrf):
    token = csrf(client, "/admin/login")
    r = client.post(
        "/admin/login",
        data={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD, "_csrf": token},
        follow_redirects=False,
    )
    assert r.status_code == 303
    return client


@pytest.fixture
def personal_form():
    return {
        "firstName": "Jane",
        "lastName": "O'Neill",
        "dobDay": "14",
        "dobMonth": "3",
        "dobYear": "1985",
        "email": "Jane.ONeill@Example.com",
        "phoneNumber": "07700 900982",
        "addressLine1": "10 Downing   Street",
        "addressLine2": "",
        "addressTown": "London",
        "addressCounty": "",
        "addressPostcode": "sw1a1aa",
    }


@pytest.fixture
def business_form():
    return {
        "businessName": "The Red Lion",
        "companyNumber": "12345678",
        "businessType": "pub",
        "businessAddressLine1": "1 Market Street",
        "businessAddressLine2": "",
        "businessAddressTown": "Manchester",
        "businessAddressCounty": "Greater Manchester",
        "businessAddressPostcode": "M1 1AE",
        "businessPhone": "0161 234 5678",
        "businessEmail": "info@redlion.example.com",
    }


@pytest.fixture
def license_form():
    return {
        "licenseType": "premises",
        "premisesType": "pub",
        "premisesAddressLine1": "1 Market Street",
        "premisesAddressTown": "Manchester",
        "premisesAddressPostcode": "M1 1AE",
        "activities": ["sale-on", "live-music"],
        "mondayHours": "11:00 to 23:00",
        "saturdayHours": "11:00 to 01:00",
    }


@pytest.fixture
def api_payload():
    """A nested application body as accepted by `POST /api/applications`."""
    return {
        "personalDetails": {
            "firstName": "  Jane ",
            "lastName": "Smith",
            "email": "JANE@Example.COM",
            "phoneNumber": "07700 900 982",
            "addressLine1": "10 Downing Street",
            "addressTown": "London",
            "addressPostcode": "sw1a1aa",
        },
        "businessDetails": {
            "businessName": "The Red Lion",
            "businessType": "pub",
            "businessAddressPostcode": "m11ae",
        },
        "licenseDetails": {
            "licenseType": "premises",
            "premisesType": "pub",
            "activities": "sale-on",
            "operatingHours": {"monday": "11:00 to 23:00"},
        },
        "declaration": "yes",
    }
