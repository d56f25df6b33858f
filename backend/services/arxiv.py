"""
arXiv API Client

Searches arXiv's public Atom API for papers.
API docs: https://info.arxiv.org/help/api/

No API key required. The client never raises: transport, status and parse
failures all come back as an empty result list.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime

import httpx

logger = logging.getLogger(__name__)


# API Configuration
ARXIV_API_URL = "https://export.arxiv.org/api/query"
ARXIV_ABS_URL = "https://arxiv.org/abs/"
USER_AGENT = "ScholarScout/1.0"

# "all:<phrase>" is an exact phrase match and returns almost nothing for long
# queries, so queries are split into terms and ANDed instead.
STOPWORDS = frozenset({
    "for", "the", "and", "using", "with", "from", "into",
    "that", "this", "are", "can", "per", "via",
})
MIN_TERM_LENGTH = 4

ENTITIES = {
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
}


@dataclass
class Paper:
    """Represents an arXiv paper."""
    id: str
    title: str
    authors: list[str] = field(default_factory=list)
    abstract: str = ""
    link: str = ""
    published_date: str = ""  # YYYY-MM-DD
    categories: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "authors": self.authors,
            "abstract": self.abstract,
            "link": self.link,
            "published_date": self.published_date,
            "categories": self.categories,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Paper":
        return cls(
            id=data.get("id", ""),
            title=data.get("title", ""),
            authors=list(data.get("authors", [])),
            abstract=data.get("abstract", ""),
            link=data.get("link", ""),
            published_date=data.get("published_date", ""),
            categories=list(data.get("categories", [])),
        )


def build_search_query(query: str) -> str:
    """
    Build an arXiv search expression from free text.

    Short terms and stopwords are dropped; the rest are ANDed across the
    full-text field. Falls back to the whole query when fewer than two
    terms survive.
    """
    terms = [
        t for t in query.strip().split()
        if len(t) >= MIN_TERM_LENGTH and t.lower() not in STOPWORDS
    ]
    if len(terms) > 1:
        return " AND ".join(f"all:{t}" for t in terms)
    return f"all:{query.strip()}"


def clean_text(text: str) -> str:
    """Collapse whitespace and decode the XML entities arXiv emits."""
    text = re.sub(r"\s+", " ", text)
    for entity, char in ENTITIES.items():
        text = text.replace(entity, char)
    return text.strip()


def _extract_tag(xml: str, tag: str) -> str | None:
    """Extract the content of the first <tag>...</tag> pair."""
    match = re.search(rf"<{tag}[^>]*>([\s\S]*?)</{tag}>", xml)
    return match.group(1).strip() if match else None


def _to_date(published: str) -> str:
    """Reduce an ISO timestamp to its date part."""
    if not published:
        return ""
    try:
        return datetime.fromisoformat(published.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return published[:10]


def _alternate_link(entry: str) -> str | None:
    # Attribute order varies, so match the whole tag first
    for tag in re.findall(r"<link\b[^>]*>", entry):
        if 'rel="alternate"' in tag:
            href = re.search(r'href="([^"]+)"', tag)
            if href:
                return href.group(1)
    return None


def _parse_entry(entry: str) -> Paper | None:
    raw_id = _extract_tag(entry, "id") or ""
    paper_id = raw_id.split("/abs/")[-1].strip()
    title = clean_text(_extract_tag(entry, "title") or "")

    if not paper_id or not title:
        return None

    return Paper(
        id=paper_id,
        title=title,
        authors=[clean_text(name) for name in re.findall(r"<name>([^<]+)</name>", entry)],
        abstract=clean_text(_extract_tag(entry, "summary") or ""),
        link=_alternate_link(entry) or f"{ARXIV_ABS_URL}{paper_id}",
        published_date=_to_date(_extract_tag(entry, "published") or ""),
        categories=re.findall(r'<category[^>]*term="([^"]+)"', entry),
    )


def parse_atom_feed(xml: str) -> list[Paper]:
    """
    Parse an arXiv Atom feed into papers.

    Uses plain tag extraction per <entry> block rather than a full XML
    parser, so a truncated or slightly malformed feed still yields the
    entries that can be read.
    """
    papers = []
    for entry in xml.split("<entry>")[1:]:
        try:
            paper = _parse_entry(entry)
        except Exception as e:
            logger.error(f"Error parsing arXiv entry: {e}")
            continue
        if paper:
            papers.append(paper)
    return papers


class ArxivClient:
    """
    Client for the arXiv search API.

    Every failure mode degrades to an empty list so callers can treat
    search as best-effort.
    """

    def __init__(self, http_client: httpx.AsyncClient, timeout: float = 15.0):
        self.http_client = http_client
        self.timeout = timeout

    async def search(self, query: str, max_results: int = 5) -> list[Paper]:
        """
        Search arXiv for papers.

        Args:
            query: Free-text query (keywords, title fragment, ...)
            max_results: Maximum number of results

        Returns:
            Matching papers, or [] on any failure
        """
        params = {
            "search_query": build_search_query(query),
            "start": 0,
            "max_results": max_results,
            "sortBy": "relevance",
            "sortOrder": "descending",
        }
        logger.info(f"arXiv searching: {query!r} ({params['search_query']})")

        try:
            response = await self.http_client.get(
                ARXIV_API_URL,
                params=params,
                headers={"Accept": "application/atom+xml", "User-Agent": USER_AGENT},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"arXiv fetch error for query {query!r}: {e}")
            return []

        if response.status_code >= 400:
            logger.error(f"arXiv API error {response.status_code} for query {query!r}")
            return []

        try:
            papers = parse_atom_feed(response.text)
        except Exception as e:
            logger.error(f"arXiv parse error for query {query!r}: {e}")
            return []

        logger.info(f"arXiv parsed {len(papers)} papers for query {query!r}")
        return papers
