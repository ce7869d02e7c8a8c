"""Source search against CrossRef, Semantic Scholar and OpenAlex.

Results from each API are mapped onto `Source` records and merged: duplicates
by DOI are dropped, optional year bounds applied, and the most cited sources
come first.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx

from scienceai.citations.models import Source, SourceType
from scienceai.errors import SearchProviderError, ValidationError

logger = logging.getLogger(__name__)

CROSSREF_URL = "https://api.crossref.org/works"
SEMANTIC_SCHOLAR_URL = "https://api.semanticscholar.org/graph/v1/paper/search"
OPENALEX_URL = "https://api.openalex.org/works"
SEMANTIC_SCHOLAR_FIELDS = "title,authors,year,venue,abstract,citationCount,externalIds,url"

PROVIDERS = ("crossref", "semanticscholar", "openalex")
DEFAULT_PROVIDERS = ("crossref", "openalex")

_WORK_TYPES: Dict[str, SourceType] = {
    "journal-article": SourceType.ARTICLE,
    "article": SourceType.ARTICLE,
    "book": SourceType.BOOK,
    "book-chapter": SourceType.BOOK,
    "proceedings-article": SourceType.CONFERENCE,
    "dissertation": SourceType.THESIS,
    "posted-content": SourceType.PREPRINT,
    "preprint": SourceType.PREPRINT,
}

_TAG_PATTERN = re.compile(r"<[^>]*>")
_NON_WORD = re.compile(r"[^\w\s]")


def _first(values: Any) -> Optional[str]:
    if isinstance(values, list) and values:
        return values[0]
    return None


def _strip_doi(doi: Optional[str]) -> Optional[str]:
    if not doi:
        return None
    return doi.replace("https://doi.org/", "").strip() or None


def reconstruct_abstract(inverted_index: Dict[str, List[int]]) -> str:
    """Rebuild OpenAlex's inverted-index abstract into plain text."""
    positions: Dict[int, str] = {}
    for word, indexes in inverted_index.items():
        for pos in indexes:
            positions[pos] = word
    return " ".join(positions[pos] for pos in sorted(positions))


def source_from_crossref(work: Dict[str, Any]) -> Source:
    doi = work.get("DOI")
    date_parts = (work.get("published") or work.get("issued") or {}).get("date-parts") or [[]]
    year = date_parts[0][0] if date_parts and date_parts[0] else None
    authors = [
        f"{a.get('given', '')} {a.get('family', '')}".strip()
        for a in work.get("author") or []
    ]
    abstract = work.get("abstract")
    return Source(
        id=doi or "",
        title=_first(work.get("title")) or "Untitled",
        authors=[a for a in authors if a],
        year=year,
        journal=_first(work.get("container-title")),
        volume=work.get("volume"),
        issue=work.get("issue"),
        pages=work.get("page"),
        doi=doi,
        url=f"https://doi.org/{doi}" if doi else None,
        abstract=_TAG_PATTERN.sub("", abstract).strip() if abstract else None,
        citation_count=work.get("is-referenced-by-count"),
        type=_WORK_TYPES.get(work.get("type", ""), SourceType.OTHER),
    )


def source_from_semantic_scholar(paper: Dict[str, Any]) -> Source:
    doi = (paper.get("externalIds") or {}).get("DOI")
    return Source(
        id=paper.get("paperId", ""),
        title=paper.get("title") or "Untitled",
        authors=[a["name"] for a in paper.get("authors") or [] if a.get("name")],
        year=paper.get("year") or None,
        journal=paper.get("venue") or None,
        doi=doi,
        url=paper.get("url") or (f"https://doi.org/{doi}" if doi else None),
        abstract=paper.get("abstract"),
        citation_count=paper.get("citationCount"),
        type=SourceType.ARTICLE,
    )


def source_from_openalex(work: Dict[str, Any]) -> Source:
    location_source = (work.get("primary_location") or {}).get("source") or {}
    inverted = work.get("abstract_inverted_index")
    return Source(
        id=work.get("id", ""),
        title=work.get("title") or work.get("display_name") or "Untitled",
        authors=[
            a["author"]["display_name"]
            for a in work.get("authorships") or []
            if (a.get("author") or {}).get("display_name")
        ],
        year=work.get("publication_year"),
        journal=location_source.get("display_name"),
        doi=_strip_doi(work.get("doi")),
        url=work.get("doi"),
        abstract=reconstruct_abstract(inverted) if inverted else None,
        citation_count=work.get("cited_by_count"),
        type=_WORK_TYPES.get(work.get("type", ""), SourceType.OTHER),
    )


def merge_results(
    result_lists: Iterable[Sequence[Source]],
    limit: int,
    year_from: Optional[int] = None,
    year_to: Optional[int] = None,
) -> List[Source]:
    """Flatten provider results, drop DOI duplicates, filter by year, rank by citations."""
    seen_dois = set()
    merged: List[Source] = []
    for results in result_lists:
        for source in results:
            doi_key = source.doi.lower() if source.doi else None
            if doi_key:
                if doi_key in seen_dois:
                    continue
                seen_dois.add(doi_key)
            merged.append(source)

    if year_from is not None:
        merged = [s for s in merged if s.year and s.year >= year_from]
    if year_to is not None:
        merged = [s for s in merged if s.year and s.year <= year_to]

    merged.sort(key=lambda s: s.citation_count or 0, reverse=True)
    return merged[:limit]


def extract_keywords(paragraph: str, max_words: int = 5) -> List[str]:
    """Pick up to `max_words` distinct words longer than four characters."""
    words = _NON_WORD.sub("", paragraph.lower()).split()
    unique: List[str] = []
    for word in words:
        if len(word) > 4 and word not in unique:
            unique.append(word)
    return unique[:max_words]


class SourceSearchClient:
    """HTTP client for the public bibliographic search APIs."""

    def __init__(
        self,
        timeout: float = 15.0,
        contact_email: str = "support@science-ai.app",
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.timeout = timeout
        self.contact_email = contact_email
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=self.timeout,
            transport=self.transport,
            headers={"User-Agent": f"ScienceAI/1.0 (mailto:{self.contact_email})"},
        )

    def _get_json(self, provider: str, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            with self._client() as client:
                response = client.get(url, params=params)
        except httpx.HTTPError as e:
            raise SearchProviderError(f"{provider} request failed: {e}")
        if response.status_code != 200:
            raise SearchProviderError(f"{provider} API error: {response.status_code}")
        try:
            data = response.json()
        except ValueError as e:
            raise SearchProviderError(f"{provider} returned invalid JSON: {e}")
        if not isinstance(data, dict):
            raise SearchProviderError(f"{provider} returned an unexpected payload")
        return data

    def search_crossref(self, query: str, limit: int = 10) -> List[Source]:
        data = self._get_json("crossref", CROSSREF_URL, {
            "query": query,
            "rows": limit,
            "sort": "relevance",
            "order": "desc",
        })
        items = (data.get("message") or {}).get("items") or []
        return [source_from_crossref(item) for item in items]

    def search_semantic_scholar(self, query: str, limit: int = 10) -> List[Source]:
        data = self._get_json("semanticscholar", SEMANTIC_SCHOLAR_URL, {
            "query": query,
            "limit": limit,
            "fields": SEMANTIC_SCHOLAR_FIELDS,
        })
        return [source_from_semantic_scholar(paper) for paper in data.get("data") or []]

    def search_openalex(self, query: str, limit: int = 10) -> List[Source]:
        data = self._get_json("openalex", OPENALEX_URL, {
            "search": query,
            "per-page": limit,
            "sort": "relevance_score:desc",
        })
        return [source_from_openalex(work) for work in data.get("results") or []]

    def search(
        self,
        query: str,
        limit: int = 15,
        providers: Sequence[str] = DEFAULT_PROVIDERS,
        year_from: Optional[int] = None,
        year_to: Optional[int] = None,
    ) -> List[Source]:
        """Query the selected providers and merge their results.

        A provider that fails is logged and contributes nothing.
        """
        unknown = [p for p in providers if p not in PROVIDERS]
        if unknown:
            raise ValidationError(f"Unknown search providers: {', '.join(unknown)}")

        searchers = {
            "crossref": self.search_crossref,
            "semanticscholar": self.search_semantic_scholar,
            "openalex": self.search_openalex,
        }
        result_lists = []
        for provider in providers:
            try:
                result_lists.append(searchers[provider](query, limit))
            except SearchProviderError as e:
                logger.warning("Source search via %s failed: %s", provider, e)
        return merge_results(result_lists, limit, year_from, year_to)

    def find_relevant(
        self,
        paragraph: str,
        existing: Sequence[Source] = (),
        limit: int = 3,
    ) -> List[Source]:
        """Suggest sources for a paragraph, excluding DOIs already cited."""
        query = " ".join(extract_keywords(paragraph))
        if not query:
            return []
        existing_dois = {s.doi.lower() for s in existing if s.doi}
        return [
            s for s in self.search(query, limit=limit)
            if not s.doi or s.doi.lower() not in existing_dois
        ]
