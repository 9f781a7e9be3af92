"""URL helpers."""

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def with_query(url: str, params: dict[str, str]) -> str:
    """Append query parameters to a URL, keeping any it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def host_of(url: str) -> str:
    """Lower-cased host of a URL, or an empty string."""
    return (urlsplit(url).hostname or "").lower()


def host_matches(url: str, domains: list[str]) -> bool:
    """True if the URL's host is one of ``domains`` or a subdomain of one."""
    host = host_of(url)
    if not host:
        return False
    return any(host == d or host.endswith(f".{d}") for d in domains)
