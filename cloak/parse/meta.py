"""Social-preview meta tag extraction."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List

from bs4 import BeautifulSoup
from bs4.dammit import EntitySubstitution
from bs4.formatter import HTMLFormatter

PREVIEW_SELECTOR = 'meta[name^="twitter:"], meta[property^="og:"]'


class _SourceOrderFormatter(HTMLFormatter):
    """Keeps attributes in source order and writes void tags without a slash."""

    def __init__(self) -> None:
        super().__init__(entity_substitution=EntitySubstitution.substitute_xml, void_element_close_prefix="")

    def attributes(self, tag):
        if tag.attrs is None:
            return []
        return list(tag.attrs.items())


_FORMATTER = _SourceOrderFormatter()


@dataclass(frozen=True)
class MetaTag:
    attribute: str
    key: str
    content: str
    markup: str


def _to_meta_tag(element) -> MetaTag:
    name = element.get("name") or ""
    if name.startswith("twitter:"):
        attribute, key = "name", name
    else:
        attribute, key = "property", element.get("property") or ""
    return MetaTag(
        attribute=attribute,
        key=key,
        content=element.get("content") or "",
        markup=element.decode(formatter=_FORMATTER),
    )


def extract_meta_tags(html: str) -> List[MetaTag]:
    """Return twitter:* and og:* meta tags in document order.

    ``html.parser`` is lenient, so truncated or malformed markup yields
    whatever tags were recognised instead of raising.
    """
    if not html or not html.strip():
        return []
    soup = BeautifulSoup(html, "html.parser")
    return [_to_meta_tag(element) for element in soup.select(PREVIEW_SELECTOR)]
