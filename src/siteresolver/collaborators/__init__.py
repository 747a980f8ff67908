"""External collaborators: web search, page fetching, content extraction, validity, AI checks."""

from __future__ import annotations

from siteresolver.collaborators.extractor import (
    ContentExtractor,
    ExtractedContent,
    PageLinks,
    SoupContentExtractor,
)
from siteresolver.collaborators.fetcher import FetchResult, HttpFetcher, PageFetcher
from siteresolver.collaborators.search import (
    CachedSearchProvider,
    FallbackSearchProvider,
    GoogleSearchProvider,
    NullSearchProvider,
    SearchCache,
    SearchProvider,
    SearchResult,
    SerperSearchProvider,
    build_search_provider,
)
from siteresolver.collaborators.validity import DnsHttpHealthChecker, SiteHealth, SiteHealthChecker
from siteresolver.collaborators.verifier import (
    CandidateFacts,
    CompanyFacts,
    OpenAIVerifier,
    VerificationResult,
    Verifier,
    build_verifier,
)

__all__ = [
    # extraction
    "ContentExtractor",
    "ExtractedContent",
    "PageLinks",
    "SoupContentExtractor",
    # fetching
    "FetchResult",
    "HttpFetcher",
    "PageFetcher",
    # search
    "CachedSearchProvider",
    "FallbackSearchProvider",
    "GoogleSearchProvider",
    "NullSearchProvider",
    "SearchCache",
    "SearchProvider",
    "SearchResult",
    "SerperSearchProvider",
    "build_search_provider",
    # validity
    "DnsHttpHealthChecker",
    "SiteHealth",
    "SiteHealthChecker",
    # verification
    "CandidateFacts",
    "CompanyFacts",
    "OpenAIVerifier",
    "VerificationResult",
    "Verifier",
    "build_verifier",
]
