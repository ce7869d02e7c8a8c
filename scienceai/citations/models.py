"""Bibliographic source and citation models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from scienceai.errors import MalformedSourceError, UnknownStyleError


class SourceType(str, Enum):
    ARTICLE = "article"
    BOOK = "book"
    WEBSITE = "website"
    CONFERENCE = "conference"
    THESIS = "thesis"
    PREPRINT = "preprint"
    OTHER = "other"


class CitationStyle(str, Enum):
    APA7 = "apa7"
    MLA9 = "mla9"
    CHICAGO = "chicago"
    HARVARD = "harvard"
    GOST = "gost"
    IEEE = "ieee"
    VANCOUVER = "vancouver"


NUMBERED_STYLES = frozenset({CitationStyle.IEEE, CitationStyle.VANCOUVER})


def parse_style(style: object) -> CitationStyle:
    if isinstance(style, CitationStyle):
        return style
    try:
        return CitationStyle(str(style).strip().lower())
    except ValueError:
        raise UnknownStyleError(style)


def parse_source_type(value: object) -> SourceType:
    try:
        return SourceType(str(value).strip().lower())
    except ValueError:
        return SourceType.OTHER


@dataclass
class Source:
    """A single bibliographic reference."""

    id: str
    title: str
    authors: List[str] = field(default_factory=list)
    year: Optional[int] = None
    journal: Optional[str] = None
    volume: Optional[str] = None
    issue: Optional[str] = None
    pages: Optional[str] = None
    doi: Optional[str] = None
    url: Optional[str] = None
    abstract: Optional[str] = None
    citation_count: Optional[int] = None
    type: SourceType = SourceType.ARTICLE

    def validate(self) -> None:
        if not self.title or not self.title.strip():
            raise MalformedSourceError(f"Source {self.id!r} has no title")

    @property
    def year_label(self) -> str:
        return str(self.year) if self.year else "n.d."

    @property
    def page_range(self) -> tuple[Optional[str], Optional[str]]:
        """Start and end page split from `pages` ("100-115" -> ("100", "115"))."""
        if not self.pages:
            return None, None
        normalized = self.pages.replace("–", "-").replace("—", "-")
        start, _, end = normalized.partition("-")
        return start.strip() or None, end.strip() or None


@dataclass
class Citation:
    source: Source
    style: CitationStyle
    formatted: str
    in_text: str


@dataclass(frozen=True)
class StyleInfo:
    id: CitationStyle
    name: str
    description: str
    example: str
