"""Tests for site-type classification and HTML extraction."""

from __future__ import annotations

from siteresolver.collaborators.extractor import ExtractedContent, PageLinks, SoupContentExtractor
from siteresolver.config import DomainLists
from siteresolver.models import SiteType
from siteresolver.resolution.classifier import classify_site

LISTS = DomainLists(
    directory_domains=["paginegialle.it"],
    social_domains=["facebook.com"],
    marketplace_domains=["amazon.it"],
    parked_indicators=["domain for sale", "buy this domain", "parked"],
)

LONG_TEXT = "Siamo un'impresa edile con trent'anni di esperienza. " * 6


# =========================================================================
# classify_site
# =========================================================================


class TestClassifySite:
    """Tests for the ordered classification rules."""

    def test_directory_by_domain(self):
        result = classify_site("paginegialle.it", ExtractedContent(text=LONG_TEXT), LISTS)
        assert result.site_type is SiteType.DIRECTORY

    def test_directory_subdomain(self):
        result = classify_site("www.paginegialle.it", ExtractedContent(), LISTS)
        assert result.site_type is SiteType.DIRECTORY

    def test_social_and_marketplace(self):
        assert classify_site("facebook.com", ExtractedContent(), LISTS).site_type is SiteType.SOCIAL
        assert (
            classify_site("amazon.it", ExtractedContent(), LISTS).site_type
            is SiteType.MARKETPLACE
        )

    def test_blacklist_beats_corporate_signals(self):
        content = ExtractedContent(
            links=PageLinks(contact=["x"], privacy=["y"]), html="P.IVA 00743110157"
        )
        assert classify_site("paginegialle.it", content, LISTS).site_type is SiteType.DIRECTORY

    def test_parked_needs_two_indicators(self):
        one = ExtractedContent(text="This site is parked. " + LONG_TEXT)
        two = ExtractedContent(text="Domain for sale", title="Buy this domain")
        assert classify_site("rossi.it", one, LISTS).site_type is SiteType.CORPORATE
        result = classify_site("rossi.it", two, LISTS)
        assert result.site_type is SiteType.PARKED
        assert result.parked_count == 2

    def test_corporate_signals(self):
        content = ExtractedContent(
            text="short",
            html="<p>P.IVA 00743110157</p>",
            links=PageLinks(contact=["https://rossi.it/contatti"]),
        )
        result = classify_site("rossi.it", content, LISTS)
        assert result.site_type is SiteType.CORPORATE
        assert result.corporate_signals == 2
        assert result.vat_ids == ("00743110157",)

    def test_organization_json_ld_and_own_email_count(self):
        content = ExtractedContent(
            text="short",
            html="info@rossi.it",
            structured_data=[{"@type": ["Organization", "Thing"]}],
        )
        assert classify_site("rossi.it", content, LISTS).corporate_signals == 2

    def test_short_body_unknown(self):
        result = classify_site("rossi.it", ExtractedContent(text="Coming soon"), LISTS)
        assert result.site_type is SiteType.UNKNOWN

    def test_long_body_corporate(self):
        result = classify_site("rossi.it", ExtractedContent(text=LONG_TEXT), LISTS)
        assert result.site_type is SiteType.CORPORATE


# =========================================================================
# SoupContentExtractor
# =========================================================================


class TestSoupContentExtractor:
    """Tests for HTML parsing into ExtractedContent."""

    HTML = """
    <html><head>
      <meta property="og:title" content="Rossi Costruzioni">
      <meta name="description" content="Impresa edile a Verona">
      <script type="application/ld+json">
        {"@context": "https://schema.org",
         "@graph": [{"@type": "LocalBusiness", "name": "Rossi"}, {"@type": "WebSite"}]}
      </script>
      <script type="application/ld+json">not json</script>
      <style>body { color: red; }</style>
    </head><body>
      <h1>Benvenuti</h1>
      <p>Testo della pagina</p>
      <a href="/contatti">Contatti</a>
      <a href="https://www.rossi.it/privacy-policy">Privacy</a>
      <a href="https://www.facebook.com/rossi">Facebook</a>
      <a href="tel:+39 045 123456">Chiama</a>
      <a href="mailto:info@rossi.it">Scrivi</a>
      <a href="#top">Su</a>
    </body></html>
    """

    def test_extract(self):
        content = SoupContentExtractor().extract(self.HTML, "https://rossi.it/")

        assert content.title == "Rossi Costruzioni"
        assert content.description == "Impresa edile a Verona"
        assert [d["@type"] for d in content.structured_data] == ["LocalBusiness", "WebSite"]
        assert content.links.contact == ["https://rossi.it/contatti"]
        assert content.links.privacy == ["https://www.rossi.it/privacy-policy"]
        assert content.links.external == ["https://www.facebook.com/rossi"]
        assert content.tel_phones == ["+39 045 123456"]
        assert content.h1 == ["Benvenuti"]
        assert "Testo della pagina" in content.text
        assert "color" not in content.text

    def test_merged_keeps_primary_title(self):
        a = ExtractedContent(text="home", title="Home", links=PageLinks(contact=["c"]))
        b = ExtractedContent(text="contatti", title="Contatti", links=PageLinks(contact=["c"]))
        merged = a.merged(b)
        assert merged.title == "Home"
        assert merged.text == "home contatti"
        assert merged.links.contact == ["c"]

    def test_malformed_links_skipped(self):
        html = (
            '<a href="http://[broken">Rotto</a>'
            '<a href="/contatti">Contatti</a>'
            '<a href="https://www.facebook.com/rossi">Facebook</a>'
        )
        content = SoupContentExtractor().extract(html, "https://rossi.it/")
        assert content.links.contact == ["https://rossi.it/contatti"]
        assert content.links.external == ["https://www.facebook.com/rossi"]

    def test_malformed_base_url(self):
        html = '<a href="https://www.rossi.it/contatti">Contatti</a>'
        content = SoupContentExtractor().extract(html, "http://[broken")
        assert content.links.external == ["https://www.rossi.it/contatti"]

    def test_empty_html(self):
        content = SoupContentExtractor().extract("", "https://rossi.it/")
        assert content.text == ""
        assert content.title == ""
