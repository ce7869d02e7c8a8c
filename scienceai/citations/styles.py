"""Display metadata for the supported citation styles."""

from __future__ import annotations

from typing import List

from scienceai.citations.models import CitationStyle, StyleInfo, parse_style

CITATION_STYLES: List[StyleInfo] = [
    StyleInfo(
        id=CitationStyle.APA7,
        name="APA 7th Edition",
        description="American Psychological Association: psychology and social sciences",
        example="Author, A. A. (Year). Title. Journal, Volume(Issue), pages. https://doi.org/xxx",
    ),
    StyleInfo(
        id=CitationStyle.MLA9,
        name="MLA 9th Edition",
        description="Modern Language Association: humanities and literature",
        example='Author. "Title." Journal, vol. X, no. X, Year, pp. X-X.',
    ),
    StyleInfo(
        id=CitationStyle.CHICAGO,
        name="Chicago Style",
        description="General purpose style used in history and the arts",
        example='Author. "Title." Journal Volume, no. Issue (Year): pages.',
    ),
    StyleInfo(
        id=CitationStyle.HARVARD,
        name="Harvard Style",
        description="Author-date style common in the UK and Australia",
        example="Author (Year) 'Title', Journal, Volume(Issue), pp. X-X.",
    ),
    StyleInfo(
        id=CitationStyle.GOST,
        name="ГОСТ Р 7.0.5-2008",
        description="Russian national bibliographic standard",
        example="Автор. Название // Журнал. – Год. – Т. X, № X. – С. X-X.",
    ),
    StyleInfo(
        id=CitationStyle.IEEE,
        name="IEEE",
        description="Institute of Electrical and Electronics Engineers: engineering and computing",
        example='[1] A. Author, "Title," Journal, vol. X, no. X, pp. X-X, Year.',
    ),
    StyleInfo(
        id=CitationStyle.VANCOUVER,
        name="Vancouver",
        description="Numbered style used in medicine and biology",
        example="Author AB, Author CD. Title. Journal. Year;Volume(Issue):pages.",
    ),
]

_STYLE_INFO = {info.id: info for info in CITATION_STYLES}


def get_style_info(style: str | CitationStyle) -> StyleInfo:
    return _STYLE_INFO[parse_style(style)]
