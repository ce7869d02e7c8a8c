"""Citation formatting, bibliography export and source search."""

from scienceai.citations.models import Citation, CitationStyle, Source, SourceType, StyleInfo
from scienceai.citations.formatter import format_citation, generate_bibliography, insert_citation
from scienceai.citations.export import export_bibtex, export_ris
from scienceai.citations.styles import CITATION_STYLES, get_style_info

__all__ = [
    "CITATION_STYLES",
    "Citation",
    "CitationStyle",
    "Source",
    "SourceType",
    "StyleInfo",
    "export_bibtex",
    "export_ris",
    "format_citation",
    "generate_bibliography",
    "get_style_info",
    "insert_citation",
]
