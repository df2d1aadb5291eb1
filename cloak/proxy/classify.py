"""Selects how an inbound request is served."""
from __future__ import annotations

import enum
from typing import Iterable, Optional


class Route(str, enum.Enum):
    LANDING = "landing"
    REDIRECT = "redirect"
    PREVIEW = "preview"


def is_bot(user_agent: Optional[str], signatures: Iterable[str]) -> bool:
    """Case-sensitive substring match of the user agent against each signature."""
    if not user_agent:
        return False
    return any(signature and signature in user_agent for signature in signatures)


def classify(*, has_target: bool, user_agent: Optional[str], signatures: Iterable[str]) -> Route:
    """Pick the landing page, a redirect or the synthesized preview.

    A missing user agent is treated as an ordinary visitor.
    """
    if not has_target:
        return Route.LANDING
    if is_bot(user_agent, signatures):
        return Route.PREVIEW
    return Route.REDIRECT
