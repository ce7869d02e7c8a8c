"""Citation formatting, export and source search routes."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from scienceai.api.deps import get_current_user_id, get_search_client, http_error
from scienceai.citations.export import export_bibtex, export_ris
from scienceai.citations.formatter import format_citation, generate_bibliography
from scienceai.citations.models import Source, parse_source_type
from scienceai.citations.search import DEFAULT_PROVIDERS, SourceSearchClient
from scienceai.citations.styles import CITATION_STYLES
from scienceai.errors import ScienceAIError

router = APIRouter(prefix="/citations", tags=["citations"])

EXPORTERS = {
    "bibtex": (export_bibtex, "application/x-bibtex"),
    "ris": (export_ris, "application/x-research-info-systems"),
}


class SourceModel(BaseModel):
    id: str = ""
    title: str
    authors: List[str] = []
    year: Optional[int] = None
    journal: Optional[str] = None
    volume: Optional[str] = None
    issue: Optional[str] = None
    pages: Optional[str] = None
    doi: Optional[str] = None
    url: Optional[str] = None
    abstract: Optional[str] = None
    citationCount: Optional[int] = None
    type: str = "article"

    def to_source(self) -> Source:
        return Source(
            id=self.id,
            title=self.title,
            authors=list(self.authors),
            year=self.year,
            journal=self.journal,
            volume=self.volume,
            issue=self.issue,
            pages=self.pages,
            doi=self.doi,
            url=self.url,
            abstract=self.abstract,
            citation_count=self.citationCount,
            type=parse_source_type(self.type),
        )

    @classmethod
    def from_source(cls, source: Source) -> "SourceModel":
        return cls(
            id=source.id,
            title=source.title,
            authors=source.authors,
            year=source.year,
            journal=source.journal,
            volume=source.volume,
            issue=source.issue,
            pages=source.pages,
            doi=source.doi,
            url=source.url,
            abstract=source.abstract,
            citationCount=source.citation_count,
            type=source.type.value,
        )


class StyleModel(BaseModel):
    id: str
    name: str
    description: str
    example: str


class FormatRequest(BaseModel):
    source: SourceModel
    style: str
    index: int = 1


class CitationResponse(BaseModel):
    style: str
    formatted: str
    inText: str


class BibliographyRequest(BaseModel):
    sources: List[SourceModel]
    style: str
    title: Optional[str] = None


class BibliographyResponse(BaseModel):
    style: str
    bibliography: str


class ExportRequest(BaseModel):
    sources: List[SourceModel]


class SearchResponse(BaseModel):
    sources: List[SourceModel]


@router.get("/styles", response_model=List[StyleModel])
async def list_styles():
    """List the supported citation styles."""
    return [
        StyleModel(id=s.id.value, name=s.name, description=s.description, example=s.example)
        for s in CITATION_STYLES
    ]


@router.post("/format", response_model=CitationResponse)
async def format_source(body: FormatRequest):
    try:
        citation = format_citation(body.source.to_source(), body.style, index=body.index)
    except ScienceAIError as e:
        raise http_error(e)
    return CitationResponse(
        style=citation.style.value,
        formatted=citation.formatted,
        inText=citation.in_text,
    )


@router.post("/bibliography", response_model=BibliographyResponse)
async def bibliography(body: BibliographyRequest):
    try:
        sources = [s.to_source() for s in body.sources]
        text = generate_bibliography(sources, body.style, title=body.title)
    except ScienceAIError as e:
        raise http_error(e)
    return BibliographyResponse(style=body.style, bibliography=text)


@router.post("/export/{fmt}", response_class=PlainTextResponse)
async def export(fmt: str, body: ExportRequest):
    """Export sources as BibTeX or RIS text."""
    if fmt not in EXPORTERS:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown export format. Valid: {', '.join(EXPORTERS)}",
        )
    exporter, media_type = EXPORTERS[fmt]
    content = exporter([s.to_source() for s in body.sources])
    return PlainTextResponse(content, media_type=media_type)


@router.get("/search", response_model=SearchResponse)
def search_sources(
    q: str = Query(..., min_length=1),
    limit: int = Query(15, ge=1, le=50),
    providers: Optional[str] = None,
    year_from: Optional[int] = None,
    year_to: Optional[int] = None,
    user_id: str = Depends(get_current_user_id),
    client: SourceSearchClient = Depends(get_search_client),
):
    """Search CrossRef, Semantic Scholar and OpenAlex for sources."""
    selected = (
        tuple(p.strip() for p in providers.split(",") if p.strip())
        if providers
        else DEFAULT_PROVIDERS
    )
    try:
        results = client.search(
            q, limit=limit, providers=selected, year_from=year_from, year_to=year_to
        )
    except ScienceAIError as e:
        raise http_error(e)
    return SearchResponse(sources=[SourceModel.from_source(s) for s in results])


class SuggestRequest(BaseModel):
    paragraph: str
    existing: List[SourceModel] = []
    limit: int = 3


@router.post("/suggest", response_model=SearchResponse)
def suggest_sources(
    body: SuggestRequest,
    user_id: str = Depends(get_current_user_id),
    client: SourceSearchClient = Depends(get_search_client),
):
    """Suggest sources for a paragraph, skipping ones already cited."""
    existing = [s.to_source() for s in body.existing]
    try:
        results = client.find_relevant(body.paragraph, existing, limit=body.limit)
    except ScienceAIError as e:
        raise http_error(e)
    return SearchResponse(sources=[SourceModel.from_source(s) for s in results])
