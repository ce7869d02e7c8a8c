from __future__ import annotations

import pytest

from scienceai.citations.models import CitationStyle
from scienceai.citations.styles import CITATION_STYLES, get_style_info
from scienceai.errors import UnknownStyleError


class TestCitationStyles:
    def test_one_entry_per_style(self):
        assert [info.id for info in CITATION_STYLES] == list(CitationStyle)

    def test_entries_are_complete(self):
        for info in CITATION_STYLES:
            assert info.name and info.description and info.example

    def test_lookup_by_id(self):
        assert get_style_info("gost").name.startswith("ГОСТ")
        assert get_style_info(CitationStyle.IEEE).name == "IEEE"

    def test_unknown_style(self):
        with pytest.raises(UnknownStyleError):
            get_style_info("turabian")
