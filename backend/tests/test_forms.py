from datetime import date

import pytest

from licensing.forms import (
    BusinessDetailsForm,
    DeclarationForm,
    LicenseDetailsForm,
    PersonalDetailsForm,
    age_on,
    validate_form,
)


def _messages(errors):
    return {e.field: e.message for e in errors}


def test_valid_personal_details(personal_form):
    form, errors = validate_form(PersonalDetailsForm, personal_form)
    assert errors == []
    assert form.email == "jane.oneill@example.com"
    assert form.to_form_data()["firstName"] == "Jane"


def test_missing_fields_are_reported_even_when_absent():
    form, errors = validate_form(PersonalDetailsForm, {})
    assert form is None
    messages = _messages(errors)
    assert messages["firstName"] == "First name is required"
    assert messages["email"] == "Email address is required"
    assert messages["phoneNumber"] == "Phone number is required"
    assert messages["addressPostcode"] == "Postcode is required"


def test_field_error_keeps_offending_value(personal_form):
    personal_form["firstName"] = "J0hn"
    _, errors = validate_form(PersonalDetailsForm, personal_form)
    (error,) = [e for e in errors if e.field == "firstName"]
    assert error.message == "First name contains invalid characters"
    assert error.value == "J0hn"


def test_email_length_limits(personal_form):
    domain = "@" + "b" * 185 + ".com"
    personal_form["email"] = "a" * 64 + domain
    assert len(personal_form["email"]) == 254
    _, errors = validate_form(PersonalDetailsForm, personal_form)
    assert "email" not in _messages(errors)

    personal_form["email"] = "a" * 65 + domain
    assert len(personal_form["email"]) == 255
    _, errors = validate_form(PersonalDetailsForm, personal_form)
    assert _messages(errors)["email"] == "Enter a valid email address"

    personal_form["email"] = "a" * 65 + "@example.com"
    _, errors = validate_form(PersonalDetailsForm, personal_form)
    assert _messages(errors)["email"] == "Enter a valid email address"


def test_business_email_length_limited(business_form):
    business_form["businessEmail"] = "info@" + "b" * 247 + ".com"
    assert len(business_form["businessEmail"]) == 256
    _, errors = validate_form(BusinessDetailsForm, business_form)
    assert _messages(errors)["businessEmail"] == "Enter a valid business email address"


@pytest.mark.parametrize(
    "born, accepted",
    [
        (date(2006, 6, 16), False),  # 17 years and 364 days
        (date(2006, 6, 15), True),  # exactly 18
        (date(1950, 1, 1), True),
    ],
)
def test_minimum_age(personal_form, born, accepted):
    personal_form.update(dobDay=str(born.day), dobMonth=str(born.month), dobYear=str(born.year))
    _, errors = validate_form(PersonalDetailsForm, personal_form, today=date(2024, 6, 15))
    messages = _messages(errors)
    if accepted:
        assert "dobYear" not in messages
    else:
        assert messages["dobYear"] == "You must be at least 18 years old and provide a valid date of birth"


def test_impossible_date_of_birth_rejected(personal_form):
    personal_form.update(dobDay="30", dobMonth="2", dobYear="1990")
    _, errors = validate_form(PersonalDetailsForm, personal_form)
    assert "dobYear" in _messages(errors)


def test_date_parts_out_of_range(personal_form):
    personal_form.update(dobDay="32", dobMonth="13", dobYear="1800")
    _, errors = validate_form(PersonalDetailsForm, personal_form, today=date(2024, 6, 15))
    messages = _messages(errors)
    assert messages["dobDay"] == "Enter a valid day"
    assert messages["dobMonth"] == "Enter a valid month"
    assert messages["dobYear"] == "Enter a valid year"


def test_age_on_counts_whole_years():
    assert age_on(date(2000, 2, 29), date(2018, 2, 28)) == 17
    assert age_on(date(2000, 2, 29), date(2018, 3, 1)) == 18


@pytest.mark.parametrize("phone", ["07700900982", "07700 900 982", "+447700900982", "01612345678"])
def test_uk_phone_numbers_accepted(personal_form, phone):
    personal_form["phoneNumber"] = phone
    _, errors = validate_form(PersonalDetailsForm, personal_form)
    assert "phoneNumber" not in _messages(errors)


@pytest.mark.parametrize("phone", ["12345", "00700900982", "+33123456789"])
def test_non_uk_phone_numbers_rejected(personal_form, phone):
    personal_form["phoneNumber"] = phone
    _, errors = validate_form(PersonalDetailsForm, personal_form)
    assert _messages(errors)["phoneNumber"] == "Enter a valid UK phone number"


@pytest.mark.parametrize("postcode", ["SW1A 1AA", "sw1a1aa", "M1 1AE", "B33 8TH"])
def test_uk_postcodes_accepted(personal_form, postcode):
    personal_form["addressPostcode"] = postcode
    _, errors = validate_form(PersonalDetailsForm, personal_form)
    assert "addressPostcode" not in _messages(errors)


def test_bad_postcode_rejected(personal_form):
    personal_form["addressPostcode"] = "12345"
    _, errors = validate_form(PersonalDetailsForm, personal_form)
    assert _messages(errors)["addressPostcode"] == "Enter a valid UK postcode"


def test_business_details_rules(business_form):
    form, errors = validate_form(BusinessDetailsForm, business_form)
    assert errors == []
    assert form.business_email == "info@redlion.example.com"

    business_form.update(companyNumber="1234", businessType="casino", businessPhone="")
    _, errors = validate_form(BusinessDetailsForm, business_form)
    messages = _messages(errors)
    assert messages["companyNumber"] == "Company registration number must be 8 digits"
    assert messages["businessType"] == "Select a valid business type"
    assert messages["businessPhone"] == "Business phone number is required"


def test_single_activity_becomes_list(license_form):
    license_form["activities"] = "sale-off"
    form, errors = validate_form(LicenseDetailsForm, license_form)
    assert errors == []
    assert form.activities == ["sale-off"]


def test_activities_required_and_known(license_form):
    del license_form["activities"]
    _, errors = validate_form(LicenseDetailsForm, license_form)
    assert _messages(errors)["activities"] == "Select at least one activity"

    license_form["activities"] = ["sale-on", "gambling"]
    _, errors = validate_form(LicenseDetailsForm, license_form)
    assert _messages(errors)["activities"] == "Invalid activity selected"


def test_opening_hours_length_limited(license_form):
    license_form["mondayHours"] = "x" * 51
    _, errors = validate_form(LicenseDetailsForm, license_form)
    assert _messages(errors)["mondayHours"] == "Monday opening hours must not exceed 50 characters"


def test_declaration():
    form, errors = validate_form(DeclarationForm, {"declaration": "yes"})
    assert errors == [] and form.declaration == "yes"
    _, errors = validate_form(DeclarationForm, {})
    assert _messages(errors)["declaration"] == "You must confirm that the information you have provided is correct"
    _, errors = validate_form(DeclarationForm, {"declaration": "no"})
    assert _messages(errors)["declaration"] == "You must confirm the declaration to continue"
