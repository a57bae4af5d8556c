from __future__ import annotations
from urllib.parse import urlsplit, urlunsplit

# ========================================
#           URL HELPERS
# ========================================
"""
Helpers for deriving the WebSocket endpoints of the game server from
its HTTP base URL.
"""

_WS_SCHEMES = {"http": "ws", "https": "wss", "ws": "ws", "wss": "wss"}


def to_ws_url(http_url: str) -> str:
    """
    Rewrite an HTTP(S) URL into its WebSocket equivalent.

    https -> wss, http -> ws. URLs already using a ws scheme are returned
    unchanged. Path, query and fragment are kept; a trailing slash is dropped
    so endpoint paths can be appended.
    """
    parts = urlsplit(http_url.strip())
    scheme = parts.scheme.lower()
    if scheme not in _WS_SCHEMES:
        raise ValueError(f"Unsupported URL scheme: {http_url!r}")
    if not parts.netloc:
        raise ValueError(f"URL has no host: {http_url!r}")
    path = parts.path.rstrip("/")
    return urlunsplit((_WS_SCHEMES[scheme], parts.netloc, path, parts.query, parts.fragment))


def normalize_server_url(server_url: str) -> str:
    """Strip whitespace and any trailing slash from the HTTP base URL."""
    return server_url.strip().rstrip("/")


def tournament_register_url(ws_base_url: str, tournament_id: str) -> str:
    return f"{ws_base_url.rstrip('/')}/tournaments/{tournament_id}/register"


def new_game_url(ws_base_url: str) -> str:
    return f"{ws_base_url.rstrip('/')}/new_game"


def is_ws_url(url: str) -> bool:
    """
    returns True if the URL uses a ws:// or wss:// scheme and names a host.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme.lower() in ("ws", "wss") and bool(parts.netloc)
