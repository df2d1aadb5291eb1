"""Builds the metadata-only document served to crawlers."""
from __future__ import annotations

from typing import Iterable

from cloak.parse.meta import MetaTag


def synthesize(tags: Iterable[MetaTag]) -> str:
    return "<body>" + "".join(tag.markup for tag in tags) + "</body>"
