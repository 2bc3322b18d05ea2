"""
Frontspace CMS connector.
GraphQL over POST with a store id header. Match posts ("matcher") carry their
fields as a JSON ``content`` blob with Swedish field names.
"""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from shared.config import Settings
from shared.errors import MalformedRecord, UpstreamUnavailable
from shared.models.domain import CMSMatchRecord, LinkButton, NewsItem
from shared.models.enums import LinkType, SourceName
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger

from ingest.providers.base import BaseSource, parse_kickoff, to_int, to_opt_int, to_opt_str

logger = get_logger(__name__)

MATCH_POST_TYPE = "matcher"

_POST_FIELDS = "id title slug content status created_at updated_at published_at"

POSTS_QUERY = f"""
query GetPosts($storeId: String!, $postTypeSlug: String, $limit: Int, $offset: Int, $contentFilter: JSON) {{
  posts(storeId: $storeId, postTypeSlug: $postTypeSlug, limit: $limit, offset: $offset, contentFilter: $contentFilter) {{
    {_POST_FIELDS}
  }}
}}
"""

POST_BY_ID_QUERY = f"""
query GetPostById($storeId: String!, $id: String!) {{
  post(storeId: $storeId, id: $id) {{
    {_POST_FIELDS}
  }}
}}
"""

POST_BY_SLUG_QUERY = f"""
query GetPostBySlug($storeId: String!, $slug: String!) {{
  post(storeId: $storeId, slug: $slug) {{
    {_POST_FIELDS}
  }}
}}
"""

CMS_STATUS_MAP = {
    "scheduled": "Scheduled",
    "in-progress": "In progress",
    "in progress": "In progress",
    "over": "Over",
}


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value >= 0x80000000 else value


def legacy_numeric_id(post_id: str) -> int:
    """Stable numeric id for CMS-only matches, compatible with existing match URLs."""
    acc = 0
    for ch in post_id:
        acc = _to_int32(_to_int32(acc) << 5) - acc + ord(ch)
    return abs(acc)


def combine_kickoff(datum: Optional[str], tid: Optional[str]) -> Optional[datetime]:
    """``datum`` is YYYY-MM-DD, ``tid`` HH:mm or HH:mm:ss (default midnight)."""
    if not datum:
        return None
    time_part = (tid or "00:00").strip()
    if time_part.count(":") == 1:
        time_part += ":00"
    return parse_kickoff(f"{datum}T{time_part}")


def normalize_status(
    raw_status: Optional[str],
    kickoff: Optional[datetime],
    now: datetime,
    finished_after: timedelta,
) -> str:
    """
    Map CMS status values to display form. A match whose kickoff is more than
    ``finished_after`` in the past is reported Over even if the CMS lags.
    """
    status = CMS_STATUS_MAP.get((raw_status or "").strip().lower(), "Scheduled")
    if status != "Over" and kickoff is not None and now > kickoff + finished_after:
        return "Over"
    return status


def _is_ticket_link(text: str) -> bool:
    return "biljett" in text.lower()


def extract_links(lankar: Any) -> list[LinkButton]:
    """All complete links in CMS order, tagged as ticket or custom."""
    if not isinstance(lankar, list):
        return []
    buttons: list[LinkButton] = []
    for link in lankar:
        if not isinstance(link, dict):
            continue
        text, url = link.get("lanktext"), link.get("url")
        if not text or not url:
            continue
        link_type = LinkType.TICKET if _is_ticket_link(str(text)) else LinkType.CUSTOM
        buttons.append(LinkButton(type=link_type, text=str(text), url=str(url)))
    return buttons


def _logo_url(value: Any) -> Optional[str]:
    return to_opt_str(value.get("url")) if isinstance(value, dict) else None


def _decode_content(post: dict[str, Any]) -> dict[str, Any]:
    content = post.get("content")
    if isinstance(content, str):
        try:
            content = json.loads(content)
        except ValueError as exc:
            raise MalformedRecord(SourceName.FRONTSPACE.value, "post content is not JSON", field="content") from exc
    return content if isinstance(content, dict) else {}


def parse_match_post(post: dict[str, Any], now: datetime, finished_after: timedelta) -> CMSMatchRecord:
    """Normalize a ``matcher`` post; raises MalformedRecord when it has no id."""
    cms_id = to_opt_str(post.get("id"))
    if cms_id is None:
        raise MalformedRecord(SourceName.FRONTSPACE.value, "match post without id", field="id")
    content = _decode_content(post)

    kickoff = combine_kickoff(content.get("datum"), content.get("tid_for_avspark"))
    links = extract_links(content.get("lankar"))
    ticket = next((b for b in links if b.type == LinkType.TICKET), None)
    custom = next((b for b in links if b.type == LinkType.CUSTOM), None)

    raw_external_id = to_opt_str(content.get("externalmatchid"))
    numeric_external_id = to_opt_int(raw_external_id) if raw_external_id and raw_external_id.isdigit() else None
    match_id = numeric_external_id if numeric_external_id and numeric_external_id > 0 else legacy_numeric_id(cms_id)

    is_custom = content.get("iscustomgame")
    return CMSMatchRecord(
        cms_id=cms_id,
        cms_slug=to_opt_str(post.get("slug")),
        match_id=str(match_id),
        external_match_id=raw_external_id,
        league_id=to_opt_str(content.get("externalleagueid")),
        league_name=str(content.get("leaguename") or ""),
        season=str(content.get("sasong") or ""),
        arena=str(content.get("arena") or ""),
        kickoff=kickoff,
        modified_date=to_opt_str(post.get("updated_at")),
        status=normalize_status(content.get("match_status"), kickoff, now, finished_after),
        home_team=str(content.get("hemmalag") or ""),
        away_team=str(content.get("bortalag") or ""),
        home_team_logo=_logo_url(content.get("logotyp_hemmalag")),
        away_team_logo=_logo_url(content.get("logotype_bortalag")),
        goals_home=to_int(content.get("mal_hemmalag")),
        goals_away=to_int(content.get("mal_bortalag")),
        is_custom_game=is_custom is True or is_custom == "true",
        ticket_url=ticket.url if ticket else None,
        ticket_text=ticket.text if ticket else None,
        sold_tickets=to_opt_int(content.get("salda_biljetter")),
        max_tickets=to_opt_int(content.get("maxtickets")),
        custom_button_text=custom.text if custom else None,
        custom_button_link=custom.url if custom else None,
        link_buttons=links,
    )


class FrontspaceSource(BaseSource):
    """Frontspace headless CMS (GraphQL)."""

    def __init__(
        self,
        settings: Settings,
        http_client: ProviderHTTPClient | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._now = now_fn or (lambda: datetime.now(timezone.utc))
        self._finished_after = timedelta(hours=settings.finished_after_kickoff_h)
        headers = {"Content-Type": "application/json", "x-store-id": settings.cms_store_id}
        if settings.cms_api_key:
            headers["Authorization"] = f"Bearer {settings.cms_api_key}"
        http_client = http_client or ProviderHTTPClient(
            source=SourceName.FRONTSPACE.value,
            base_url="",
            headers=headers,
            timeout_s=settings.cms_timeout_s,
            max_retries=settings.provider_max_retries,
        )
        super().__init__(SourceName.FRONTSPACE, http_client)

    async def _query(self, query: str, variables: dict[str, Any], endpoint: str) -> Optional[dict[str, Any]]:
        body = {"query": query, "variables": {"storeId": self._settings.cms_store_id, **variables}}
        result = await self._http.post_json(self._settings.cms_endpoint, body, endpoint=endpoint)
        if result is None:
            return None
        if not isinstance(result, dict):
            raise MalformedRecord(self._name.value, "GraphQL response is not an object")
        if result.get("errors"):
            raise UpstreamUnavailable(self._name.value, f"GraphQL errors: {result['errors']}")
        data = result.get("data")
        return data if isinstance(data, dict) else None

    def _to_record(self, post: Any) -> Optional[CMSMatchRecord]:
        if not isinstance(post, dict):
            return None
        return parse_match_post(post, self._now(), self._finished_after)

    async def get_match(self, identifier: str) -> Optional[CMSMatchRecord]:
        """
        Look a match up by external match id, then post id, then slug.
        First hit wins; None when all three miss.
        """

        async def call() -> Optional[CMSMatchRecord]:
            data = await self._query(
                POSTS_QUERY,
                {
                    "postTypeSlug": MATCH_POST_TYPE,
                    "limit": 1,
                    "offset": 0,
                    "contentFilter": {"externalmatchid": {"equals": identifier}},
                },
                endpoint="match_by_external_id",
            )
            posts = (data or {}).get("posts") or []
            if posts:
                return self._to_record(posts[0])

            for query, variables, endpoint in (
                (POST_BY_ID_QUERY, {"id": identifier}, "match_by_id"),
                (POST_BY_SLUG_QUERY, {"slug": identifier}, "match_by_slug"),
            ):
                data = await self._query(query, variables, endpoint=endpoint)
                record = self._to_record((data or {}).get("post"))
                if record is not None:
                    return record
            return None

        return await self._fetch("get_match", call, identifier=identifier)

    async def list_news(self, limit: int = 6) -> list[NewsItem]:
        """Latest news posts; posts without a title or slug are skipped."""

        async def call() -> list[NewsItem]:
            data = await self._query(
                POSTS_QUERY,
                {"postTypeSlug": self._settings.cms_news_post_type, "limit": limit, "offset": 0},
                endpoint="news",
            )
            items: list[NewsItem] = []
            for post in (data or {}).get("posts") or []:
                if not isinstance(post, dict) or not post.get("id") or not post.get("title") or not post.get("slug"):
                    continue
                try:
                    content = _decode_content(post)
                except MalformedRecord:
                    continue
                items.append(
                    NewsItem(
                        id=str(post["id"]),
                        title=str(post["title"]),
                        slug=str(post["slug"]),
                        published_at=to_opt_str(post.get("published_at") or post.get("created_at")),
                        excerpt=to_opt_str(content.get("ingress")),
                    )
                )
            items.sort(key=lambda n: n.published_at or "", reverse=True)
            return items

        return await self._fetch("list_news", call)
