"""
Tests for website_intel.py - extraction helpers and the collector.
"""
import asyncio

import httpx
import pytest
from bs4 import BeautifulSoup

from kyb.services.website_intel import (
    WebsiteIntelligenceCollector,
    extract_address,
    extract_company_name,
    extract_emails,
    extract_phones,
    extract_vat_number,
    find_crn,
    normalize_url,
)

from tests.fixtures.kyb_fixtures import (
    ALPHA_SITE,
    NORTHERN_HOME_HTML,
    NORTHERN_TERMS_HTML,
    site_transport,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestFindCrn:
    """Tests for the ordered CRN pattern cascade."""

    @pytest.mark.parametrize("text,expected", [
        ("Company No: 12345678", "12345678"),
        ("Company Registration Number 09876543.", "09876543"),
        ("CRN: 11223344", "11223344"),
        ("Registered in England and Wales, company number 07654321", "07654321"),
        ("Company Number: SC123456", "SC123456"),
        ("Registered with Companies House under number 06543210.", "06543210"),
    ])
    def test_labelled_patterns(self, text, expected):
        """Labelled disclosures are recognised."""
        crn, _ = find_crn(text, [])
        assert crn == expected

    def test_labelled_beats_bare_number(self):
        """An earlier bare 8-digit number does not win over a labelled CRN."""
        text = "Order 55555555 shipped. Company No: 12345678."
        crn, context = find_crn(text, [])
        assert crn == "12345678"
        assert "Company No: 12345678" in context

    def test_invalid_format_is_skipped(self):
        """Matches failing the registry format are noted and ignored."""
        notes = []
        crn, _ = find_crn("Company No: 00000000", notes)
        assert crn is None
        assert any("invalid format" in n for n in notes)

    def test_no_crn(self):
        """Text without anything CRN-shaped yields nothing."""
        assert find_crn("Call us on 0161 496 0000", []) == (None, None)


class TestExtractors:
    """Tests for the contact and name extractors."""

    def test_emails_prefer_generic_inboxes(self):
        """info@/contact@ style addresses come first; assets and duplicates are dropped."""
        text = "jane@acme.co.uk logo@2x.png info@acme.co.uk jane@acme.co.uk"
        assert extract_emails(text) == ["info@acme.co.uk", "jane@acme.co.uk"]

    def test_uk_phones(self):
        """UK numbers in national and international form."""
        text = "Call 0161 496 0000 or +44 20 7946 0000"
        assert extract_phones(text) == ["0161 496 0000", "+44 20 7946 0000"]

    @pytest.mark.parametrize("text,expected", [
        ("VAT Number: GB123456789.", "GB123456789"),
        ("VAT No. 987 6543 21", "987654321"),
        ("Our VAT: GB999888777", "GB999888777"),
    ])
    def test_vat_number(self, text, expected):
        """Labelled VAT numbers are normalised without spaces."""
        assert extract_vat_number(text) == expected

    def test_address_from_postcode_window(self):
        """Without address markup, the text before a UK postcode is used."""
        soup = BeautifulSoup("<footer>Find us: 1 High Street, Manchester M1 1AA</footer>", "html.parser")
        address = extract_address(soup, soup.get_text(" ", strip=True))
        assert address.endswith("M1 1AA")
        assert "1 High Street" in address

    def test_company_name_from_copyright(self):
        """The copyright line is the preferred source of the trading name."""
        soup = BeautifulSoup("<footer>© 2024 Acme Widgets Ltd. All rights reserved.</footer>", "html.parser")
        notes = []
        assert extract_company_name(soup, soup.get_text(" ", strip=True), notes) == "Acme Widgets"
        assert notes

    def test_company_name_falls_back_to_brand(self):
        """With no footer match, brand markup is used."""
        soup = BeautifulSoup('<a class="navbar-brand">Acme Widgets</a>', "html.parser")
        assert extract_company_name(soup, "", []) == "Acme Widgets"

    def test_normalize_url(self):
        """A scheme is added when missing."""
        assert normalize_url("acme.co.uk") == "https://acme.co.uk"
        assert normalize_url("http://acme.co.uk") == "http://acme.co.uk"


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------

class TestWebsiteIntelligenceCollector:
    """Tests for WebsiteIntelligenceCollector.collect."""

    def test_collects_main_page_facts(self):
        """All facts on the home page are extracted; the description comes from the about page."""
        collector = WebsiteIntelligenceCollector(transport=site_transport(ALPHA_SITE))
        data = asyncio.run(collector.collect("www.alphamusclegym.co.uk", "ALPHA MUSCLE GYM LIMITED"))

        assert data.reachable is True
        assert data.url == "https://www.alphamusclegym.co.uk"
        assert data.title == "Alpha Muscle Gym | Manchester"
        assert data.company_name == "Alpha Muscle Gym"
        assert data.name_similarity == 1.0
        assert data.crn == "12345678"
        assert data.crn_location == "main_page"
        assert "12345678" in data.crn_context
        assert data.email == "info@alphamusclegym.co.uk"
        assert data.phone == "0161 496 0000"
        assert data.vat_number == "GB123456789"
        assert data.address.endswith("M1 1AA")
        assert data.description.startswith("Alpha Muscle Gym has coached")
        assert {link["platform"] for link in data.social_links} == {"facebook", "instagram"}

    def test_crn_found_on_subpage(self):
        """When the home page has no CRN, linked legal pages are searched."""
        pages = {
            "www.northernlights.co.uk/": NORTHERN_HOME_HTML,
            "www.northernlights.co.uk/terms": NORTHERN_TERMS_HTML,
        }
        collector = WebsiteIntelligenceCollector(transport=site_transport(pages))
        data = asyncio.run(collector.collect("https://www.northernlights.co.uk"))

        assert data.crn == "SC654321"
        assert data.crn_location == "/terms"
        assert data.description == "Wedding and event photography across Scotland."
        assert data.company_name == "Northern Lights Event Photography"

    def test_no_crn_anywhere(self):
        """A site without a CRN says so in its notes."""
        pages = {"www.northernlights.co.uk/": NORTHERN_HOME_HTML}
        collector = WebsiteIntelligenceCollector(transport=site_transport(pages))
        data = asyncio.run(collector.collect("https://www.northernlights.co.uk"))

        assert data.reachable is True
        assert data.crn is None
        assert any("No valid CRN found" in n for n in data.notes)

    def test_unreachable_site_does_not_raise(self):
        """Network failures produce an empty result annotated with the error."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        collector = WebsiteIntelligenceCollector(transport=httpx.MockTransport(handler))
        data = asyncio.run(collector.collect("https://down.example.co.uk"))

        assert data.reachable is False
        assert data.crn is None
        assert any("Error fetching" in n for n in data.notes)
        assert any("No data found" in n for n in data.notes)

    def test_http_error_status(self):
        """A 4xx home page is treated as no data."""
        collector = WebsiteIntelligenceCollector(transport=site_transport({}))
        data = asyncio.run(collector.collect("https://missing.example.co.uk"))
        assert data.reachable is False
        assert any("HTTP 404" in n for n in data.notes)

    def test_empty_url_is_rejected(self):
        """An empty URL is a caller error."""
        collector = WebsiteIntelligenceCollector(transport=site_transport({}))
        with pytest.raises(ValueError):
            asyncio.run(collector.collect("  "))
