"""HTML content extraction with BeautifulSoup."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urljoin, urlparse

import structlog
from bs4 import BeautifulSoup

logger = structlog.get_logger(__name__)

_CONTACT_MARKERS = ("contat", "contact", "chi-siam", "dove-siamo")
_PRIVACY_MARKERS = ("privacy", "cookie", "legal", "note-legali")


@dataclass
class PageLinks:
    internal: list[str] = field(default_factory=list)
    external: list[str] = field(default_factory=list)
    contact: list[str] = field(default_factory=list)
    privacy: list[str] = field(default_factory=list)


@dataclass
class ExtractedContent:
    """Everything the evidence stage needs from one (or several merged) pages."""

    text: str = ""
    html: str = ""
    title: str = ""
    description: str = ""
    links: PageLinks = field(default_factory=PageLinks)
    structured_data: list[dict[str, Any]] = field(default_factory=list)
    tel_phones: list[str] = field(default_factory=list)
    h1: list[str] = field(default_factory=list)

    def merged(self, other: ExtractedContent) -> ExtractedContent:
        """Combine with a secondary page of the same site (contact, privacy)."""
        return ExtractedContent(
            text=f"{self.text} {other.text}".strip(),
            html=self.html + "\n" + other.html,
            title=self.title or other.title,
            description=self.description or other.description,
            links=PageLinks(
                internal=_union(self.links.internal, other.links.internal),
                external=_union(self.links.external, other.links.external),
                contact=_union(self.links.contact, other.links.contact),
                privacy=_union(self.links.privacy, other.links.privacy),
            ),
            structured_data=[*self.structured_data, *other.structured_data],
            tel_phones=_union(self.tel_phones, other.tel_phones),
            h1=_union(self.h1, other.h1),
        )


def _union(a: list[str], b: list[str]) -> list[str]:
    return list(dict.fromkeys([*a, *b]))


class ContentExtractor(Protocol):
    def extract(self, html: str, base_url: str) -> ExtractedContent: ...


def _same_site(host: str, base_host: str) -> bool:
    host = host.removeprefix("www.")
    base_host = base_host.removeprefix("www.")
    return host == base_host or host.endswith("." + base_host)


def _flatten_json_ld(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, list):
        return [item for entry in data for item in _flatten_json_ld(entry)]
    if isinstance(data, dict):
        if "@graph" in data:
            return _flatten_json_ld(data["@graph"])
        return [data]
    return []


class SoupContentExtractor:
    """Parse a page into text, metadata, classified links and JSON-LD blocks."""

    def __init__(self, parser: str = "html.parser") -> None:
        self.parser = parser

    def extract(self, html: str, base_url: str) -> ExtractedContent:
        soup = BeautifulSoup(html or "", self.parser)

        title = soup.title.get_text(strip=True) if soup.title else ""
        if not title:
            title = _meta(soup, property="og:title")
        description = _meta(soup, name="description") or _meta(soup, property="og:description")

        structured: list[dict[str, Any]] = []
        for script in soup.find_all("script", type="application/ld+json"):
            try:
                structured.extend(_flatten_json_ld(json.loads(script.string or "")))
            except (json.JSONDecodeError, TypeError):
                logger.debug("json_ld_invalid", url=base_url)

        links, tel_phones = self._links(soup, base_url)
        h1 = [h.get_text(" ", strip=True) for h in soup.find_all("h1")]

        for tag in soup(["script", "style", "noscript", "template"]):
            tag.decompose()
        body = soup.body or soup
        text = re.sub(r"\s+", " ", body.get_text(" ")).strip()

        return ExtractedContent(
            text=text,
            html=html or "",
            title=title,
            description=description,
            links=links,
            structured_data=structured,
            tel_phones=tel_phones,
            h1=[h for h in h1 if h and len(h) < 200][:5],
        )

    @staticmethod
    def _links(soup: BeautifulSoup, base_url: str) -> tuple[PageLinks, list[str]]:
        try:
            base_host = (urlparse(base_url).hostname or "").lower()
        except ValueError:
            logger.debug("base_url_invalid", url=base_url)
            base_url, base_host = "", ""
        links = PageLinks()
        tel_phones: list[str] = []

        for anchor in soup.find_all("a", href=True):
            href = anchor["href"].strip()
            lowered = href.lower()
            if lowered.startswith("tel:"):
                tel_phones.append(href[4:])
                continue
            if lowered.startswith(("mailto:", "javascript:", "#")):
                continue
            try:
                absolute = urljoin(base_url, href)
                parsed = urlparse(absolute)
                host = parsed.hostname
            except ValueError:
                logger.debug("link_invalid", href=href)
                continue
            if parsed.scheme not in ("http", "https") or not host:
                continue

            if _same_site(host.lower(), base_host):
                links.internal.append(absolute)
                path = parsed.path.lower()
                if any(m in path for m in _CONTACT_MARKERS):
                    links.contact.append(absolute)
                if any(m in path for m in _PRIVACY_MARKERS):
                    links.privacy.append(absolute)
            else:
                links.external.append(absolute)

        return (
            PageLinks(
                internal=_union(links.internal, []),
                external=_union(links.external, []),
                contact=_union(links.contact, []),
                privacy=_union(links.privacy, []),
            ),
            _union(tel_phones, []),
        )


def _meta(soup: BeautifulSoup, **attrs: str) -> str:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return ""
    content = tag.get("content")
    return content.strip() if isinstance(content, str) else ""
