"""BibTeX and RIS export of source lists."""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Sequence, Tuple

from scienceai.citations.formatter import normalize_doi, surname
from scienceai.citations.models import Source, SourceType

BIBTEX_ENTRY_TYPES: Dict[SourceType, str] = {
    SourceType.ARTICLE: "article",
    SourceType.BOOK: "book",
    SourceType.CONFERENCE: "inproceedings",
    SourceType.THESIS: "phdthesis",
    SourceType.WEBSITE: "misc",
    SourceType.PREPRINT: "misc",
    SourceType.OTHER: "misc",
}

BIBTEX_VENUE_FIELDS: Dict[SourceType, str] = {
    SourceType.CONFERENCE: "booktitle",
    SourceType.BOOK: "publisher",
    SourceType.THESIS: "school",
    SourceType.WEBSITE: "howpublished",
}

RIS_TYPE_CODES: Dict[SourceType, str] = {
    SourceType.ARTICLE: "JOUR",
    SourceType.BOOK: "BOOK",
    SourceType.CONFERENCE: "CONF",
    SourceType.THESIS: "THES",
    SourceType.WEBSITE: "ELEC",
    SourceType.PREPRINT: "UNPB",
    SourceType.OTHER: "GEN",
}

RIS_VENUE_TAGS: Dict[SourceType, str] = {
    SourceType.CONFERENCE: "T2",
    SourceType.BOOK: "PB",
    SourceType.THESIS: "PB",
}

_KEY_CHARS = re.compile(r"[^0-9A-Za-z]")
_LATEX_SPECIAL = re.compile(r"(?<!\\)([&%$#_])")

# doi and url are read verbatim by biblatex and the url package
_VERBATIM_FIELDS = frozenset({"doi", "url"})


def _base_key(source: Source) -> str:
    names = [a for a in source.authors if a and a.strip()]
    stem = _KEY_CHARS.sub("", surname(names[0])) if names else ""
    year = str(source.year) if source.year else "nd"
    return f"{stem or 'unknown'}{year}"


def bibtex_keys(sources: Sequence[Source]) -> List[str]:
    """Citation keys of the form SurnameYear, suffixed a, b, ... on collision."""
    seen: Dict[str, int] = {}
    keys = []
    for source in sources:
        base = _base_key(source)
        count = seen.get(base, 0)
        seen[base] = count + 1
        keys.append(base if count == 0 else f"{base}{_suffix(count)}")
    return keys


def _suffix(n: int) -> str:
    # 1 -> a, 26 -> z, 27 -> aa
    letters = ""
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("a") + rem) + letters
    return letters


def _balance_braces(value: str) -> str:
    """Drop any brace without a partner so the field delimiters stay intact."""
    unmatched = set()
    open_positions: List[int] = []
    for i, ch in enumerate(value):
        if ch == "{":
            open_positions.append(i)
        elif ch == "}":
            if open_positions:
                open_positions.pop()
            else:
                unmatched.add(i)
    unmatched.update(open_positions)
    return "".join(ch for i, ch in enumerate(value) if i not in unmatched)


def bibtex_escape(value: str) -> str:
    """Escape LaTeX special characters in a BibTeX field value.

    Characters that are already escaped are left alone, and balanced brace
    groups such as {DNA} are kept.
    """
    return _LATEX_SPECIAL.sub(r"\\\1", _balance_braces(value))


def _bibtex_fields(source: Source) -> List[Tuple[str, str]]:
    fields: List[Tuple[str, Optional[str]]] = [
        ("author", " and ".join(a.strip() for a in source.authors if a and a.strip())),
        ("title", source.title),
        (BIBTEX_VENUE_FIELDS.get(source.type, "journal"), source.journal),
        ("year", str(source.year) if source.year else None),
        ("volume", source.volume),
        ("number", source.issue),
        ("pages", source.pages),
        ("doi", normalize_doi(source)),
        ("url", source.url),
    ]
    return [
        (name, value if name in _VERBATIM_FIELDS else bibtex_escape(value))
        for name, value in fields
        if value
    ]


def export_bibtex(sources: Sequence[Source]) -> str:
    """One @type{key, ...} entry per source, with only the fields present."""
    entries = []
    for key, source in zip(bibtex_keys(sources), sources):
        entry_type = BIBTEX_ENTRY_TYPES.get(source.type, "misc")
        body = ",\n".join(f"  {name} = {{{value}}}" for name, value in _bibtex_fields(source))
        entries.append(f"@{entry_type}{{{key},\n{body}\n}}")
    return "\n\n".join(entries)


def _ris_record(source: Source) -> str:
    lines = [f"TY  - {RIS_TYPE_CODES.get(source.type, 'GEN')}"]
    lines.extend(f"AU  - {a.strip()}" for a in source.authors if a and a.strip())

    start_page, end_page = source.page_range
    optional = [
        ("TI", source.title),
        (RIS_VENUE_TAGS.get(source.type, "JO"), source.journal),
        ("PY", str(source.year) if source.year else None),
        ("VL", source.volume),
        ("IS", source.issue),
        ("SP", start_page),
        ("EP", end_page),
        ("DO", normalize_doi(source)),
        ("UR", source.url),
        ("AB", " ".join(source.abstract.split()) if source.abstract else None),
    ]
    lines.extend(f"{tag}  - {value}" for tag, value in optional if value)
    lines.append("ER  - ")
    return "\n".join(lines)


def export_ris(sources: Sequence[Source]) -> str:
    """RIS records separated by blank lines, each closed by an ER line."""
    return "\n\n".join(_ris_record(source) for source in sources)
