"""
Tests for report.py - compiling the VerificationResult.
"""
from datetime import date

import pytest

from kyb.schemas.verification import CandidateIdentity, CrnSource
from kyb.services.cross_validator import cross_validate
from kyb.services.report import (
    NO_COMPANY_FOUND,
    build_beneficial_owners,
    build_directors,
    build_not_found_result,
    build_verification_result,
    business_age_years,
    industry_for_sic,
    ownership_band,
    split_person_name,
)
from kyb.services.website_intel import WebsiteData

from tests.fixtures.kyb_fixtures import ALPHA_CRN, ALPHA_OFFICERS, ALPHA_PROFILE, ALPHA_PSCS


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestSplitPersonName:
    """Tests for split_person_name."""

    @pytest.mark.parametrize("raw,expected", [
        ("SMITH, John Paul", (None, "John", "Paul", "Smith")),
        ("Mr John Paul Smith", ("Mr", "John", "Paul", "Smith")),
        ("Dr. Jane Doe", ("Dr", "Jane", None, "Doe")),
        ("O'NEILL, Siobhan", (None, "Siobhan", None, "O'Neill")),
        ("Cher", (None, None, None, "Cher")),
    ])
    def test_split(self, raw, expected):
        parts = split_person_name(raw)
        assert (parts["title"], parts["first_name"], parts["middle_name"], parts["last_name"]) == expected


class TestOwnershipBand:
    """Tests for ownership_band."""

    @pytest.mark.parametrize("natures,expected", [
        (["ownership-of-shares-75-to-100-percent"], "75-100%"),
        (["voting-rights-25-to-50-percent", "ownership-of-shares-25-to-50-percent"], "25-50%"),
        (["ownership-of-shares-more-than-25-percent-registered-overseas-entity"], ">25%"),
        (["significant-influence-or-control"], None),
        (None, None),
    ])
    def test_band(self, natures, expected):
        assert ownership_band(natures) == expected


class TestIndustryForSic:
    """Tests for industry_for_sic."""

    @pytest.mark.parametrize("codes,expected", [
        (["93130"], "Arts, Entertainment and Recreation"),
        (["49410"], "Transportation and Storage"),
        (["None Supplied", "62012"], "Information and Communication"),
        ([], None),
        (None, None),
    ])
    def test_section(self, codes, expected):
        assert industry_for_sic(codes) == expected


class TestBusinessAgeYears:
    """Tests for business_age_years."""

    def test_before_anniversary(self):
        assert business_age_years("2015-03-02", today=date(2025, 3, 1)) == 9

    def test_on_anniversary(self):
        assert business_age_years("2015-03-02", today=date(2025, 3, 2)) == 10

    def test_future_date_is_zero(self):
        assert business_age_years("2030-01-01", today=date(2025, 1, 1)) == 0

    @pytest.mark.parametrize("value", [None, "", "02/03/2015"])
    def test_unparseable(self, value):
        assert business_age_years(value) is None


class TestPeople:
    """Tests for director and beneficial-owner extraction."""

    def test_resigned_officers_are_dropped(self):
        directors = build_directors(ALPHA_OFFICERS)
        assert len(directors) == 1
        assert directors[0].full_name == "SMITH, John Paul"
        assert directors[0].last_name == "Smith"
        assert directors[0].role == "director"

    def test_beneficial_owner_fields(self):
        owners = build_beneficial_owners(ALPHA_PSCS)
        assert len(owners) == 1
        assert owners[0].ownership == "75-100%"
        assert owners[0].date_of_birth == "1984-07"

    def test_ceased_pscs_are_dropped(self):
        ceased = [{**ALPHA_PSCS[0], "ceased_on": "2020-01-01"}]
        assert build_beneficial_owners(ceased) == []


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

class TestBuildVerificationResult:
    """Tests for build_verification_result and build_not_found_result."""

    CANDIDATE = CandidateIdentity(crn=ALPHA_CRN, crn_source=CrnSource.AI, company_name="ALPHA MUSCLE GYM LIMITED")

    def _build(self, website):
        cross = cross_validate(ALPHA_PROFILE, website, "Alpha Muscle Gym")
        return build_verification_result(
            business_name="Alpha Muscle Gym",
            candidate=self.CANDIDATE,
            profile=ALPHA_PROFILE,
            website=website,
            website_source="ai",
            cross=cross,
            officers=ALPHA_OFFICERS,
            pscs=ALPHA_PSCS,
        )

    def test_verified_company(self):
        """All checks agree: company, business and details are filled in."""
        website = WebsiteData(
            url="https://www.alphamusclegym.co.uk",
            reachable=True,
            crn=ALPHA_CRN,
            company_name="Alpha Muscle Gym",
            address="1 High Street, Manchester M1 1AA",
            email="info@alphamusclegym.co.uk",
            social_links=[{"platform": "facebook", "url": "https://www.facebook.com/alphamusclegym"}],
        )
        result = self._build(website)

        assert result.verification_status == "verified"
        assert result.company.registration_number == ALPHA_CRN
        assert result.company.industry == "Arts, Entertainment and Recreation"
        assert result.company.profile_url.endswith(f"/company/{ALPHA_CRN}")
        assert result.company.registered_address_text == "1, High Street, Manchester, M1 1AA"
        assert result.company.operational_address == "1 High Street, Manchester M1 1AA"
        assert result.business.website_source == "ai"
        assert result.business.social_links[0].platform == "facebook"
        assert len(result.directors) == 1
        assert result.verification_details.crn_validation.status == "verified"
        assert result.verification_details.address_validation.status == "verified"
        assert result.verification_details.name_validation.status == "verified"
        assert result.raw_data["cross_validation"]["verification_status"] == "verified"

    def test_unreachable_website(self):
        """Website checks are reported as not performed, and the result carries a warning."""
        result = self._build(WebsiteData(url="https://down.example.co.uk"))

        assert result.verification_status == "warning: website unreachable"
        assert result.validation_issues == ["Company website https://down.example.co.uk could not be reached"]
        details = result.verification_details
        assert details.crn_validation.status == "skipped"
        assert details.address_validation.status == "skipped"
        assert details.website_data.status == "not_found"

    def test_result_is_json_serialisable(self):
        """The stored form is plain JSON."""
        dumped = self._build(None).model_dump(mode="json")
        assert dumped["business"]["website"] is None
        assert isinstance(dumped["generated_at"], str)

    def test_not_found_result(self):
        result = build_not_found_result("Qzxy Fitness", "AI reported no active company")
        assert result.verification_status == NO_COMPANY_FOUND
        assert result.company.registration_number is None
        assert result.raw_data == {"reason": "AI reported no active company"}
