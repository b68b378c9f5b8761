"""Access link helpers (core domain).

Links are built as ``{base_url}{route_path}?budgetId=<id>&budgetToken=<token>``.
Without a base URL the link stays relative so the caller can still embed it.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

if TYPE_CHECKING:
    from budgetwatch.core.config import LinkConfig

DEFAULT_ROUTE_PATH = "/finance/budgets"
BUDGET_ID_PARAM = "budgetId"
TOKEN_PARAM = "budgetToken"

_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)


def normalize_base_url(value: Optional[str]) -> Optional[str]:
    """Keep scheme, host and path of an http(s) URL, or return None."""

    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parts = urlsplit(value.strip())
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if scheme not in ("http", "https") or not parts.netloc:
        return None
    return f"{scheme}://{parts.netloc}{parts.path.rstrip('/')}"


def normalize_route_path(value: Optional[str], default: str = DEFAULT_ROUTE_PATH) -> str:
    """Return a path that starts with a single '/', keeping query and fragment.

    Absolute URLs are reduced to their path part so a misconfigured route can
    never point links at another host.
    """

    if not isinstance(value, str) or not value.strip():
        return default
    trimmed = value.strip()
    try:
        parts = urlsplit(trimmed if _ABSOLUTE_URL.match(trimmed) else trimmed.lstrip("/"))
    except ValueError:
        return default
    path = re.sub(r"/{2,}", "/", "/" + parts.path.lstrip("/"))
    return urlunsplit(("", "", path, parts.query, parts.fragment))


def build_access_link(link_config: "LinkConfig", budget_id: int, token: str) -> str:
    """Embed the budget id and access token into the configured route."""

    parts = urlsplit(link_config.route_path)
    params = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in (BUDGET_ID_PARAM, TOKEN_PARAM)
    ]
    params.append((BUDGET_ID_PARAM, str(budget_id)))
    params.append((TOKEN_PARAM, token))
    relative = urlunsplit(("", "", parts.path, urlencode(params), parts.fragment))
    if link_config.base_url:
        return f"{link_config.base_url}{relative}"
    return relative
