"""
Tests for web_discovery.py and the search-engine scraper.
"""
import asyncio

import httpx
import pytest

from kyb.services.connectors.exa import ExaConnector
from kyb.services.connectors.search_engines import (
    SearchEngineScraper,
    SearchHit,
    parse_bing_results,
    parse_duckduckgo_results,
)
from kyb.services.web_discovery import (
    WebDiscoveryService,
    guess_domains,
    is_uk_flavoured,
    rank_hits,
    registrable_domain,
    score_candidate,
)

from tests.fixtures.kyb_fixtures import BING_HTML, DUCKDUCKGO_HTML, FakeSearch


def _offline_exa() -> ExaConnector:
    return ExaConnector(api_key="")


# ---------------------------------------------------------------------------
# Result page parsing
# ---------------------------------------------------------------------------

class TestSearchResultParsing:
    """Tests for Bing and DuckDuckGo HTML parsing."""

    def test_bing_results(self):
        """Organic results with absolute links are extracted in order."""
        hits = parse_bing_results(BING_HTML)
        assert [h.url for h in hits] == [
            "https://www.facebook.com/alphamusclegym",
            "https://www.yell.com/biz/alpha-muscle-gym",
            "https://www.alphamusclegym.co.uk/contact",
            "https://gymdirectory.co.uk/alpha-muscle-gym",
        ]
        assert hits[2].title == "Alpha Muscle Gym | Official Site"
        assert hits[2].snippet == "Manchester's strength gym"
        assert {h.engine for h in hits} == {"bing"}

    def test_duckduckgo_redirects_are_unwrapped(self):
        """DuckDuckGo's /l/?uddg= redirect links resolve to the target URL."""
        hits = parse_duckduckgo_results(DUCKDUCKGO_HTML)
        assert hits[0].url == "https://www.alphamusclegym.co.uk/"
        assert hits[0].engine == "duckduckgo"
        assert hits[1].url == "https://www.linkedin.com/company/alpha-muscle-gym"

    def test_scraper_falls_back_to_duckduckgo(self):
        """An empty Bing page triggers the DuckDuckGo request."""
        requested = []

        def handler(request):
            requested.append(request.url.host)
            if request.url.host == "www.bing.com":
                return httpx.Response(200, text="<html><body>No results</body></html>")
            return httpx.Response(200, text=DUCKDUCKGO_HTML)

        scraper = SearchEngineScraper(transport=httpx.MockTransport(handler))
        hits = asyncio.run(scraper.search("Alpha Muscle Gym official website"))

        assert requested == ["www.bing.com", "html.duckduckgo.com"]
        assert hits[0].url == "https://www.alphamusclegym.co.uk/"


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

class TestScoring:
    """Tests for score_candidate and rank_hits."""

    def test_social_platform_is_disqualified(self):
        """Social/registry hosts short-circuit to -100."""
        assert score_candidate("Alpha Muscle Gym", "https://www.linkedin.com/company/alpha") == -100.0

    def test_exact_domain_beats_directory(self):
        """The company's own domain outranks a directory listing."""
        own = score_candidate("Alpha Muscle Gym Ltd", "https://www.alphamusclegym.co.uk/")
        directory = score_candidate("Alpha Muscle Gym Ltd", "https://gymdirectory.co.uk/alpha-muscle-gym")
        assert own > directory
        assert own > 200

    def test_official_title_bonus(self):
        """"official" in the result title adds to the score."""
        plain = score_candidate("Acme", "https://acme.com", "Acme")
        official = score_candidate("Acme", "https://acme.com", "Acme official site")
        assert official - plain == pytest.approx(10)

    def test_uk_tld_bonus_only_for_uk_names(self):
        """.co.uk is preferred for UK-flavoured names."""
        uk = score_candidate("Acme Ltd", "https://acme.co.uk") - score_candidate("Acme Ltd", "https://acme.com")
        neutral = score_candidate("Acme", "https://acme.co.uk") - score_candidate("Acme", "https://acme.com")
        assert uk - neutral == pytest.approx(15)

    def test_rank_hits_excludes_and_dedupes(self):
        """Denylisted domains are dropped and each domain appears once."""
        hits = parse_bing_results(BING_HTML) + [
            SearchHit(url="https://www.alphamusclegym.co.uk/", title="Home", engine="duckduckgo"),
        ]
        ranked = rank_hits("Alpha Muscle Gym", hits)
        domains = [c.domain for c in ranked]

        assert domains[0] == "alphamusclegym.co.uk"
        assert domains.count("alphamusclegym.co.uk") == 1
        assert "facebook.com" not in domains
        assert "yell.com" not in domains

    @pytest.mark.parametrize("value,expected", [
        ("https://www.shop.acme.co.uk/path", "acme.co.uk"),
        ("acme.com", "acme.com"),
        ("https://blog.acme.com", "acme.com"),
    ])
    def test_registrable_domain(self, value, expected):
        """Two-level UK suffixes keep three labels."""
        assert registrable_domain(value) == expected

    def test_uk_flavour(self):
        """Legal suffixes and place names hint at a UK company."""
        assert is_uk_flavoured("Alpha Muscle Gym Limited")
        assert not is_uk_flavoured("Acme Robotics")

    def test_guess_domains_order(self):
        """UK names try .co.uk first, others .com first."""
        assert guess_domains("Qzxy Fitness Ltd")[0] == "https://www.qzxyfitness.co.uk"
        assert guess_domains("Acme Robotics")[0] == "https://www.acmerobotics.com"


# ---------------------------------------------------------------------------
# Discovery service
# ---------------------------------------------------------------------------

class TestWebDiscoveryService:
    """Tests for WebDiscoveryService.discover."""

    def test_top_search_result_wins(self):
        """The best-scoring viable hit becomes the website."""
        search = FakeSearch(parse_bing_results(BING_HTML))
        service = WebDiscoveryService(search=search, exa=_offline_exa())
        result = asyncio.run(service.discover("Alpha Muscle Gym Limited"))

        assert result.source == "web_search"
        assert result.website == "https://alphamusclegym.co.uk"
        assert len(search.queries) == 3
        assert search.queries[0] == "Alpha Muscle Gym Limited official website"
        assert result.candidates[0].domain == "alphamusclegym.co.uk"

    def test_first_answering_domain_guess(self):
        """Without search results, the first guessed domain that answers wins."""
        def handler(request):
            if request.url.host.endswith(".co.uk"):
                return httpx.Response(503)
            return httpx.Response(200)

        service = WebDiscoveryService(
            search=FakeSearch(), exa=_offline_exa(), transport=httpx.MockTransport(handler)
        )
        result = asyncio.run(service.discover("Qzxy Fitness Ltd"))

        assert result.source == "domain_guess"
        assert result.website == "https://www.qzxyfitness.uk"

    def test_unverified_guess(self):
        """When no guess responds, the first guess is returned and flagged."""
        def handler(request):
            raise httpx.ConnectError("no route", request=request)

        service = WebDiscoveryService(
            search=FakeSearch(), exa=_offline_exa(), transport=httpx.MockTransport(handler)
        )
        result = asyncio.run(service.discover("Qzxy Fitness Ltd"))

        assert result.website == "https://www.qzxyfitness.co.uk"
        assert "unverified guess" in result.note

    def test_exa_fallback(self):
        """The paid search API is used when scraping finds nothing."""
        def handler(request):
            assert request.url.host == "api.exa.ai"
            assert request.headers["x-api-key"] == "exa-key"
            return httpx.Response(200, json={"results": [{"url": "https://www.qzxyfitness.com/", "title": "Qzxy"}]})

        exa = ExaConnector(api_key="exa-key", transport=httpx.MockTransport(handler))
        service = WebDiscoveryService(search=FakeSearch(), exa=exa)
        result = asyncio.run(service.discover("Qzxy Fitness"))

        assert result.source == "web_search"
        assert result.website == "https://qzxyfitness.com"

    def test_exa_garbled_response_is_no_hits(self):
        exa = ExaConnector(
            api_key="exa-key",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="Service temporarily unavailable")),
        )
        assert asyncio.run(exa.search("Qzxy Fitness")) == []

    def test_search_failure_still_returns_url(self):
        """An unexpected error degrades to an error_fallback guess."""
        class BrokenSearch:
            async def search(self, query):
                raise RuntimeError("parser exploded")

        service = WebDiscoveryService(search=BrokenSearch(), exa=_offline_exa())
        result = asyncio.run(service.discover("Acme Robotics"))

        assert result.source == "error_fallback"
        assert result.website == "https://www.acmerobotics.com"
        assert "unverified guess" in result.note
