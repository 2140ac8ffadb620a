"""Grammar for pulling a tracking number out of arbitrary decoded or recognized text."""
from __future__ import annotations

import re

from .tracking_config import TrackingIdConfig

WHITESPACE = re.compile(r"\s+")
URL_ID_PARAM = re.compile(r"[?&#]id=([A-Za-z0-9_-]+)", re.IGNORECASE | re.ASCII)
GENERIC_ID = re.compile(r"[A-Z]{2,5}-\d{6,8}-[A-Z0-9]{3,}", re.IGNORECASE | re.ASCII)
TOKEN_SPLIT = re.compile(r"[^A-Za-z0-9_-]+", re.ASCII)
TOKEN_CHARS = re.compile(r"[A-Za-z0-9_-]+", re.ASCII)

MIN_TOKEN_LENGTH = 6
MAX_TOKEN_LENGTH = 32


def strict_pattern(config: TrackingIdConfig) -> re.Pattern[str]:
    return re.compile(
        rf"{re.escape(config.prefix)}-\d{{{config.date_digits}}}-[A-Za-z0-9]{{3,}}",
        re.IGNORECASE | re.ASCII,
    )


def extract_id(text: str | None, config: TrackingIdConfig | None = None) -> str | None:
    """Return the upper-cased tracking number found in ``text``, or ``None``.

    Rules, first match wins:

    1. ``id=`` query/fragment parameter of a tracking URL.
    2. ``PREFIX-<date digits>-XXX`` using the configured prefix and date width.
    3. Any ``AAA-123456-XXX`` shaped identifier.
    4. A 6-32 character token mixing letters and digits, preferring one that
       starts with the configured prefix.
    """

    cfg = config or TrackingIdConfig()
    collapsed = WHITESPACE.sub(" ", text or "").strip()
    if not collapsed:
        return None

    url_match = URL_ID_PARAM.search(collapsed)
    if url_match:
        return url_match.group(1).upper()

    strict_match = strict_pattern(cfg).search(collapsed)
    if strict_match:
        return strict_match.group(0).upper()

    generic_match = GENERIC_ID.search(collapsed)
    if generic_match:
        return generic_match.group(0).upper()

    return _pick_token(collapsed, cfg.prefix)


def _pick_token(text: str, prefix: str) -> str | None:
    survivors = [token for token in TOKEN_SPLIT.split(text) if _is_id_like(token)]
    if not survivors:
        return None
    marker = f"{prefix.upper()}-"
    for token in survivors:
        if token.upper().startswith(marker):
            return token.upper()
    return survivors[0].upper()


def _is_id_like(token: str) -> bool:
    if not MIN_TOKEN_LENGTH <= len(token) <= MAX_TOKEN_LENGTH:
        return False
    if not TOKEN_CHARS.fullmatch(token):
        return False
    return any(char.isalpha() for char in token) and any(char.isdigit() for char in token)
