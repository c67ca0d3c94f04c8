"""
Catalog Client - Paged reads of the upstream project catalog (GraphQL).

The catalog is organised as causes (groups), each listing its projects.
A project can belong to several causes, so callers must deduplicate.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..archivist.models import as_naive_utc, utc_now_naive
from ..common.http_client import create_source_client
from ..config.settings import settings
from ..harvester.handles import extract_farcaster_username, extract_twitter_handle

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

CAUSES_QUERY = """
query GetCauses($limit: Float, $offset: Float) {
  causes(limit: $limit, offset: $offset) {
    id
    title
    projects {
      id
      slug
      title
      description
      verified
      qualityScore
      totalDonations
      giveBacks
      status { name }
      projectPower { powerRank }
      socialMedia { type link }
      projectUpdate { title content createdAt }
      categories { name }
      updatedAt
    }
  }
}
"""


class CatalogError(Exception):
    """The catalog could not be read (HTTP or GraphQL error)."""


@dataclass
class CatalogGroup:
    id: str
    title: str
    projects: List[Dict[str, Any]] = field(default_factory=list)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return as_naive_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None


def extract_social_handles(project: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """Pick the X/Twitter and Farcaster handles out of a project's social links."""
    links: Dict[str, str] = {}
    for social in project.get("socialMedia") or []:
        social_type = (social.get("type") or "").strip().lower()
        link = social.get("link")
        if social_type and link:
            links[social_type] = link
    for profile in project.get("socialProfiles") or []:
        network = (profile.get("socialNetwork") or "").strip().lower()
        link = profile.get("link")
        if network and link:
            links.setdefault(network, link)

    twitter = links.get("x") or links.get("twitter")
    return {
        "twitter": extract_twitter_handle(twitter) if twitter else None,
        "farcaster": extract_farcaster_username(links.get("farcaster")) if links.get("farcaster") else None,
    }


def project_to_account_data(project: Dict[str, Any]) -> Dict[str, Any]:
    """Map a catalog project onto ProjectSocialAccount columns."""
    handles = extract_social_handles(project)
    update = project.get("projectUpdate") or {}
    slug = project.get("slug")

    return {
        "project_id": str(project["id"]),
        "twitter_handle": handles["twitter"],
        "farcaster_username": handles["farcaster"],
        "title": project.get("title"),
        "slug": slug,
        "description": project.get("description"),
        "project_status": (project.get("status") or {}).get("name") or "UNKNOWN",
        "quality_score": project.get("qualityScore"),
        "power_rank": (project.get("projectPower") or {}).get("powerRank"),
        "total_donations": project.get("totalDonations"),
        "last_update_date": _parse_datetime(update.get("createdAt")),
        "last_update_title": update.get("title"),
        "last_update_content": update.get("content"),
        "details": {
            "last_synced_at": utc_now_naive().isoformat(),
            "synced_by": "catalog_sync",
            "project_url": f"{settings.project_base_url}/{slug}" if slug else None,
            "categories": [c.get("name") for c in project.get("categories") or [] if c.get("name")],
            "verified": project.get("verified"),
            "give_backs": project.get("giveBacks"),
            "catalog_updated_at": project.get("updatedAt"),
        },
    }


class CatalogClient:
    """GraphQL client for the project catalog."""

    def __init__(self, url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url or settings.catalog_graphql_url
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = create_source_client(
                extra_headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch_page(self, offset: int, limit: int) -> List[CatalogGroup]:
        limit = min(limit, MAX_PAGE_SIZE)
        try:
            response = await self._get_client().post(
                self.url,
                json={"query": CAUSES_QUERY, "variables": {"limit": limit, "offset": offset}},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise CatalogError(f"Catalog request failed at offset {offset}: {type(e).__name__}: {e}") from e

        body = response.json()
        if body.get("errors"):
            messages = "; ".join(str(err.get("message")) for err in body["errors"])
            raise CatalogError(f"Catalog query failed at offset {offset}: {messages}")

        causes = (body.get("data") or {}).get("causes") or []
        return [
            CatalogGroup(
                id=str(cause.get("id")),
                title=cause.get("title") or "",
                projects=[p for p in cause.get("projects") or [] if p.get("id") is not None],
            )
            for cause in causes
        ]

    async def iter_groups(self, page_size: Optional[int] = None) -> AsyncIterator[CatalogGroup]:
        """Yield every group, stopping on an empty or short page."""
        page_size = min(page_size or settings.catalog_page_size, MAX_PAGE_SIZE)
        offset = 0
        while True:
            page = await self.fetch_page(offset, page_size)
            logger.debug(f"Catalog page at offset {offset}: {len(page)} groups")
            for group in page:
                yield group
            if len(page) < page_size:
                return
            offset += page_size
