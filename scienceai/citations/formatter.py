"""Citation formatting for the supported bibliographic styles.

Every renderer is a pure function of the source: optional fields that are
missing are left out rather than rendered as placeholders. Numbered styles
(IEEE, Vancouver) take the reference number from `index`, which only has a
meaning within a bibliography; single ad hoc citations default to 1.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Sequence, Tuple

from scienceai.citations.models import (
    NUMBERED_STYLES,
    Citation,
    CitationStyle,
    Source,
    parse_style,
)
from scienceai.errors import ValidationError

UNKNOWN_AUTHOR = "Unknown Author"
DEFAULT_BIBLIOGRAPHY_TITLE = "References"
DOI_PREFIXES = ("https://doi.org/", "http://doi.org/", "https://dx.doi.org/", "doi:")

Renderer = Callable[[Source, List[str], int], Tuple[str, str]]


def split_name(name: str) -> Tuple[List[str], str]:
    """Split a full name into given names and surname.

    Handles both "Given Surname" and "Surname, Given" forms.
    """
    name = " ".join(name.split())
    if "," in name:
        last, _, given = name.partition(",")
        return given.split(), last.strip()
    parts = name.split(" ")
    if len(parts) == 1:
        return [], parts[0]
    return parts[:-1], parts[-1]


def surname(name: str) -> str:
    return split_name(name)[1] or name


def _initials(given: Sequence[str], with_periods: bool) -> List[str]:
    marks = []
    for part in given:
        if not part:
            continue
        marks.append(f"{part[0]}." if with_periods else part[0])
    return marks


def _sentence(text: str) -> str:
    """Terminate text with a period unless it already ends in punctuation."""
    text = text.rstrip()
    if text.endswith((".", "?", "!")):
        return text
    return f"{text}."


def normalize_doi(source: Source) -> Optional[str]:
    if not source.doi:
        return None
    doi = source.doi.strip()
    for prefix in DOI_PREFIXES:
        if doi.lower().startswith(prefix):
            doi = doi[len(prefix):]
            break
    return doi or None


def _volume_issue(source: Source) -> str:
    """Volume with the issue in parentheses, e.g. 5(2), from whichever is present."""
    text = source.volume or ""
    if source.issue:
        text += f"({source.issue})"
    return text


def _authors(source: Source) -> List[str]:
    names = [a.strip() for a in source.authors if a and a.strip()]
    return names or [UNKNOWN_AUTHOR]


# ---------------------------------------------------------------- author lists

def _apa_authors(authors: List[str]) -> str:
    if len(authors) == 1:
        return authors[0]
    if len(authors) == 2:
        return f"{authors[0]} & {authors[1]}"
    if len(authors) <= 20:
        return f"{', '.join(authors[:-1])}, & {authors[-1]}"
    return f"{', '.join(authors[:19])}, ... {authors[-1]}"


def _mla_authors(authors: List[str]) -> str:
    if len(authors) == 1:
        return authors[0]
    if len(authors) == 2:
        return f"{authors[0]} and {authors[1]}"
    return f"{authors[0]}, et al."


def _gost_authors(authors: List[str]) -> str:
    if len(authors) <= 3:
        return ", ".join(authors)
    return f"{authors[0]} [и др.]"


def _ieee_name(name: str) -> str:
    given, last = split_name(name)
    return " ".join(_initials(given, with_periods=True) + [last])


def _vancouver_name(name: str) -> str:
    given, last = split_name(name)
    initials = "".join(_initials(given, with_periods=False))
    return f"{last} {initials}".strip()


# ------------------------------------------------------------------ renderers

def _format_apa(source: Source, authors: List[str], index: int) -> Tuple[str, str]:
    text = f"{_apa_authors(authors)} ({source.year_label}). {_sentence(source.title)}"
    if source.journal:
        text += f" {source.journal}"
        volume_issue = _volume_issue(source)
        if volume_issue:
            text += f", {volume_issue}"
        if source.pages:
            text += f", {source.pages}"
        text += "."
    doi = normalize_doi(source)
    if doi:
        text += f" https://doi.org/{doi}"
    elif source.url:
        text += f" {source.url}"

    if len(authors) <= 2:
        names = " & ".join(surname(a) for a in authors)
        in_text = f"({names}, {source.year_label})"
    else:
        in_text = f"({surname(authors[0])} et al., {source.year_label})"
    return text, in_text


def _format_mla(source: Source, authors: List[str], index: int) -> Tuple[str, str]:
    text = f'{_sentence(_mla_authors(authors))} "{_sentence(source.title)}"'
    if source.journal:
        text += f" {source.journal}"
        if source.volume:
            text += f", vol. {source.volume}"
        if source.issue:
            text += f", no. {source.issue}"
        text += f", {source.year_label}"
        if source.pages:
            text += f", pp. {source.pages}"
    else:
        text += f" {source.year_label}"
    text += "."
    doi = normalize_doi(source)
    if doi:
        text += f" https://doi.org/{doi}."
    elif source.url:
        text += f" {source.url}."

    if len(authors) == 1:
        in_text = f"({surname(authors[0])})"
    elif len(authors) == 2:
        in_text = f"({surname(authors[0])} and {surname(authors[1])})"
    else:
        in_text = f"({surname(authors[0])} et al.)"
    return text, in_text


def _format_chicago(source: Source, authors: List[str], index: int) -> Tuple[str, str]:
    text = f'{_sentence(", ".join(authors))} "{_sentence(source.title)}"'
    if source.journal:
        text += f" {source.journal}"
        if source.volume:
            text += f" {source.volume}"
        if source.issue:
            text += f", no. {source.issue}"
        text += f" ({source.year_label})"
        if source.pages:
            text += f": {source.pages}"
    else:
        text += f" {source.year_label}"
    text += "."
    doi = normalize_doi(source)
    if doi:
        text += f" https://doi.org/{doi}."
    elif source.url:
        text += f" {source.url}."

    in_text = f"({surname(authors[0])} {source.year_label})"
    return text, in_text


def _format_harvard(source: Source, authors: List[str], index: int) -> Tuple[str, str]:
    text = f"{', '.join(authors)} ({source.year_label}) '{source.title}'"
    if source.journal:
        text += f", {source.journal}"
        volume_issue = _volume_issue(source)
        if volume_issue:
            text += f", {volume_issue}"
        if source.pages:
            text += f", pp. {source.pages}"
    text += "."
    doi = normalize_doi(source)
    if doi:
        text += f" doi: {doi}."
    elif source.url:
        text += f" Available at: {source.url}."

    if len(authors) == 1:
        names = surname(authors[0])
    elif len(authors) == 2:
        names = f"{surname(authors[0])} and {surname(authors[1])}"
    else:
        names = f"{surname(authors[0])} et al."
    in_text = f"({names}, {source.year_label})"
    return text, in_text


def _format_gost(source: Source, authors: List[str], index: int) -> Tuple[str, str]:
    text = f"{_sentence(_gost_authors(authors))} {source.title.strip()}"
    if source.journal:
        text += f" // {source.journal}. – {source.year_label}"
        parts = []
        if source.volume:
            parts.append(f"Т. {source.volume}")
        if source.issue:
            parts.append(f"№ {source.issue}")
        if parts:
            text += f". – {', '.join(parts)}"
        if source.pages:
            text += f". – С. {source.pages}"
    else:
        text += f". – {source.year_label}"
    text += "."
    doi = normalize_doi(source)
    if doi:
        text += f" – DOI: {doi}."
    elif source.url:
        text += f" – URL: {source.url}."

    in_text = f"[{surname(authors[0])}, {source.year_label}]"
    return text, in_text


def _format_ieee(source: Source, authors: List[str], index: int) -> Tuple[str, str]:
    names = ", ".join(_ieee_name(a) for a in authors)
    text = f'{names}, "{source.title.strip()},"'
    if source.journal:
        text += f" {source.journal}"
        if source.volume:
            text += f", vol. {source.volume}"
        if source.issue:
            text += f", no. {source.issue}"
        if source.pages:
            text += f", pp. {source.pages}"
        text += f", {source.year_label}"
    else:
        text += f" {source.year_label}"
    text += "."
    doi = normalize_doi(source)
    if doi:
        text += f" doi: {doi}."
    elif source.url:
        text += f" [Online]. Available: {source.url}"

    return text, f"[{index}]"


def _format_vancouver(source: Source, authors: List[str], index: int) -> Tuple[str, str]:
    names = [_vancouver_name(a) for a in authors[:6]]
    if len(authors) > 6:
        names.append("et al")
    text = f"{_sentence(', '.join(names))} {_sentence(source.title)}"
    if source.journal:
        text += f" {_sentence(source.journal)} {source.year_label}"
        if source.volume:
            text += f";{source.volume}"
        if source.issue:
            text += f"({source.issue})"
        if source.pages:
            text += f":{source.pages}"
    else:
        text += f" {source.year_label}"
    text += "."
    doi = normalize_doi(source)
    if doi:
        text += f" doi:{doi}"
    elif source.url:
        text += f" Available from: {source.url}"

    return text, f"({index})"


_RENDERERS: Dict[CitationStyle, Renderer] = {
    CitationStyle.APA7: _format_apa,
    CitationStyle.MLA9: _format_mla,
    CitationStyle.CHICAGO: _format_chicago,
    CitationStyle.HARVARD: _format_harvard,
    CitationStyle.GOST: _format_gost,
    CitationStyle.IEEE: _format_ieee,
    CitationStyle.VANCOUVER: _format_vancouver,
}


def format_citation(source: Source, style: str | CitationStyle, index: int = 1) -> Citation:
    """Render a source as a full citation and an in-text marker.

    Args:
        source: The bibliographic record. Its title must be non-empty.
        style: One of the CitationStyle ids.
        index: Reference number for numbered styles (IEEE, Vancouver).
    """
    citation_style = parse_style(style)
    source.validate()
    if isinstance(index, bool) or not isinstance(index, int) or index < 1:
        raise ValidationError("Citation index must be a positive integer")

    formatted, in_text = _RENDERERS[citation_style](source, _authors(source), index)
    return Citation(source=source, style=citation_style, formatted=formatted, in_text=in_text)


def generate_bibliography(
    sources: Sequence[Source],
    style: str | CitationStyle,
    title: Optional[str] = None,
) -> str:
    """Render a heading followed by each source's full citation.

    Entries keep the caller's order. Numbered styles prefix each entry with
    its position, "[1] ", "[2] ", ...
    """
    citation_style = parse_style(style)
    heading = title if title is not None else DEFAULT_BIBLIOGRAPHY_TITLE

    entries = []
    for position, source in enumerate(sources, start=1):
        citation = format_citation(source, citation_style, index=position)
        if citation_style in NUMBERED_STYLES:
            entries.append(f"[{position}] {citation.formatted}")
        else:
            entries.append(citation.formatted)

    if not entries:
        return heading
    return f"{heading}\n\n" + "\n\n".join(entries)


def insert_citation(text: str, position: int, citation: Citation) -> str:
    """Splice a citation's in-text marker into `text` at `position`.

    A single space is inserted before the marker, so the marker starts at
    position + 1. Positions outside the text are clamped to its ends.
    """
    position = max(0, min(position, len(text)))
    return f"{text[:position]} {citation.in_text}{text[position:]}"
