from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_TRUTHY_SSL = {"1", "true", "yes", "on"}
_FALSY_SSL = {"0", "false", "no", "off", "disable"}


def normalize_database_url(url: str) -> str:
    """Point Postgres URLs at the asyncpg driver and translate SSL options.

    asyncpg takes ``ssl=<mode>`` rather than libpq's ``sslmode``; hosted
    providers frequently hand out ``?sslmode=require`` or ``?ssl=true``.
    Non-Postgres URLs (e.g. ``sqlite+aiosqlite``) are returned unchanged.
    """
    url = (url or "").strip()
    if not url:
        return url

    parts = urlsplit(url)
    scheme = parts.scheme
    if scheme not in {"postgres", "postgresql", "postgresql+psycopg", "postgresql+asyncpg"}:
        return url
    scheme = "postgresql+asyncpg"

    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    sslmode = query.pop("sslmode", None)
    ssl_key = next((key for key in query if key.lower() == "ssl"), None)
    ssl_val = query.pop(ssl_key, None) if ssl_key else None

    mode = None
    if sslmode:
        mode = sslmode.strip().lower()
    elif ssl_val is not None:
        normalized = ssl_val.strip().lower()
        if normalized in _TRUTHY_SSL:
            mode = "require"
        elif normalized in _FALSY_SSL:
            mode = "disable"
        else:
            mode = normalized
    if mode:
        query["ssl"] = mode

    new_query = urlencode(query, doseq=True)
    return urlunsplit((scheme, parts.netloc, parts.path, new_query, parts.fragment))
