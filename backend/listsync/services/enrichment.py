"""
Row enrichment through a SERP (search engine results) API.

Each enrichment config names input fields used to build a search query and
an output field: `official_company_name` or `domain`.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol
from urllib.parse import urlparse

import httpx

from listsync.models.integration import EnrichmentConfig

logger = logging.getLogger(__name__)

OUTPUT_COMPANY_NAME = "official_company_name"
OUTPUT_DOMAIN = "domain"

# Appended to the query so results favour the right kind of page
_QUERY_HINTS = {
    OUTPUT_COMPANY_NAME: "official name",
    OUTPUT_DOMAIN: "official website",
}


@dataclass
class EnrichmentResult:
    value: Optional[str]
    success: bool
    error: Optional[str] = None


class Enricher(Protocol):
    async def enrich(self, config: EnrichmentConfig, row_data: Mapping[str, Any]) -> EnrichmentResult:
        ...


def build_search_query(config: EnrichmentConfig, row_data: Mapping[str, Any]) -> str:
    parts = []
    for field_name in config.input_fields or []:
        value = row_data.get(field_name)
        if value is not None and str(value).strip():
            parts.append(str(value).strip())
    hint = _QUERY_HINTS.get(config.output_field)
    if hint:
        parts.append(hint)
    return " ".join(parts)


def _hostname(link: str) -> Optional[str]:
    host = urlparse(link).hostname
    if not host:
        return None
    return host[4:] if host.startswith("www.") else host


def extract_company_name(results: Dict[str, Any], institution: str = "") -> Optional[str]:
    """Knowledge-graph title, else the title of an 'official' looking result."""
    knowledge_graph = results.get("knowledge_graph") or {}
    if knowledge_graph.get("title"):
        return str(knowledge_graph["title"])

    institution = institution.lower()
    for result in results.get("organic_results") or []:
        snippet = str(result.get("snippet") or "").lower()
        title = str(result.get("title") or "")
        link = str(result.get("link") or "")
        if (
            "official" in snippet
            or (institution and institution in title.lower())
            or ".edu" in link
            or "wikipedia" in link
        ):
            # "Acme Corp - Home | Acme" -> "Acme Corp"
            return title.split(" | ")[0].split(" - ")[0].split(" – ")[0].strip() or None
    return None


def extract_domain(results: Dict[str, Any], institution: str = "") -> Optional[str]:
    """Domain of the most official looking result, else of the first result."""
    organic: List[Dict[str, Any]] = results.get("organic_results") or []
    if not organic:
        return None

    compact = "".join(institution.lower().split())[:10]
    for result in organic:
        link = str(result.get("link") or "")
        if ".edu" in link or (compact and compact in link):
            return _hostname(link)

    first_link = organic[0].get("link")
    return _hostname(str(first_link)) if first_link else None


class SerpEnrichmentService:
    """Runs SERP-backed enrichment configs."""

    def __init__(
        self,
        api_key: Optional[str],
        api_url: str = "https://serpapi.com/search.json",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self._client = http_client or httpx.AsyncClient(timeout=30.0)

    async def search(self, query: str) -> Dict[str, Any]:
        if not self.api_key:
            raise RuntimeError("SERP API key not configured")

        response = await self._client.get(self.api_url, params={"q": query, "api_key": self.api_key})
        if response.status_code != 200:
            raise RuntimeError(f"SERP API error: {response.status_code}")
        return response.json()

    async def enrich(self, config: EnrichmentConfig, row_data: Mapping[str, Any]) -> EnrichmentResult:
        """Run one config on one row; failures are returned, not raised."""
        if not config.is_enabled:
            return EnrichmentResult(value=None, success=False, error="Enrichment config is disabled")
        if config.service != "serp":
            return EnrichmentResult(value=None, success=False, error=f"Unsupported service: {config.service}")

        query = build_search_query(config, row_data)
        try:
            results = await self.search(query)
        except (httpx.HTTPError, RuntimeError, ValueError) as e:
            logger.warning(f"⚠️ SERP search failed for '{query}': {e}")
            return EnrichmentResult(value=None, success=False, error=str(e))

        institution = str(row_data.get("institution") or row_data.get("company") or "")
        if config.output_field == OUTPUT_COMPANY_NAME:
            value = extract_company_name(results, institution)
        elif config.output_field == OUTPUT_DOMAIN:
            value = extract_domain(results, institution)
        else:
            return EnrichmentResult(
                value=None,
                success=False,
                error=f"Unsupported output field: {config.output_field}",
            )

        if not value:
            return EnrichmentResult(value=None, success=False, error="Could not extract value from search results")
        return EnrichmentResult(value=value, success=True)

    async def close(self) -> None:
        await self._client.aclose()
