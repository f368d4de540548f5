import ipaddress
from urllib.parse import urlparse

# Characters a browser refuses in a domain name
FORBIDDEN_HOST_CHARS = frozenset(" #%/:<>?@[\\]^|\x7f")


def _valid_host(host: str) -> bool:
    if ":" in host:
        # Bracketed IPv6 literal, brackets already stripped by urlparse
        try:
            ipaddress.IPv6Address(host)
        except ValueError:
            return False
        return True
    return not any(c in FORBIDDEN_HOST_CHARS or ord(c) < 0x20 for c in host)


def is_fetchable(url: str) -> bool:
    """
    True only for absolute http/https URLs with a usable host.
    Anything that fails to parse, uses another scheme, or carries control
    characters or forbidden host characters is not fetchable.
    """
    if not url or not isinstance(url, str):
        return False
    # urlparse silently drops tabs and newlines; reject them instead
    if any(ord(c) < 0x20 or c == "\x7f" for c in url):
        return False
    try:
        p = urlparse(url)
        # Accessing .port validates it; bad ports raise ValueError
        p.port
    except ValueError:
        return False
    return p.scheme in ("http", "https") and bool(p.hostname) and _valid_host(p.hostname)


def origin_of(url: str) -> str:
    """
    scheme://host[:port] of an absolute URL, with no trailing slash.
    Used as the base of the absolute rewrite pass and as Referer/Origin.
    """
    p = urlparse(url)
    # Drop any user:password@ part
    host = p.netloc.rsplit("@", 1)[-1]
    return f"{p.scheme}://{host}"
