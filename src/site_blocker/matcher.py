"""Decide whether a URL falls under a blocked domain."""

from typing import Iterable, Mapping, Optional
from urllib.parse import urlsplit

from .config import DOMAIN_ALIASES
from .store import RecordStore


def _strip_www(hostname: str) -> str:
    return hostname[4:] if hostname.startswith("www.") else hostname


def extract_hostname(url: str) -> str:
    """
    Extract the lowercase, www.-stripped hostname from a URL or bare domain.

    A missing scheme is treated as https://. If the value cannot be parsed
    as a URL, the raw string itself is used as the hostname.

    Args:
        url: URL or domain as seen by the navigation hook

    Returns:
        Hostname suitable for matching
    """
    raw = url.strip()
    candidate = raw if raw.lower().startswith(("http://", "https://")) else f"https://{raw}"
    try:
        hostname = urlsplit(candidate).hostname
    except ValueError:
        hostname = None
    if not hostname:
        return _strip_www(raw.lower())
    return _strip_www(hostname)


def get_domain_aliases(
    hostname: str, aliases: Optional[Mapping[str, Iterable[str]]] = None
) -> list[str]:
    """
    Names under which the same service is also reachable.

    A subdomain of an aliased name maps to the same subdomain of each
    partner, so mobile.twitter.com also yields mobile.x.com.

    Args:
        hostname: Normalized hostname
        aliases: Alias table (default: DOMAIN_ALIASES)

    Returns:
        Alias hostnames, excluding the hostname itself
    """
    table = DOMAIN_ALIASES if aliases is None else aliases
    result: list[str] = []
    for name, partners in table.items():
        if hostname == name:
            prefix = ""
        elif hostname.endswith("." + name):
            prefix = hostname[: -len(name)]
        else:
            continue
        for partner in partners:
            alias = prefix + partner
            if alias != hostname and alias not in result:
                result.append(alias)
    return result


def domain_matches(candidate: str, blocked_domain: str) -> bool:
    """True if candidate is blocked_domain itself or one of its subdomains."""
    return candidate == blocked_domain or candidate.endswith("." + blocked_domain)


def matches_any(
    url: str,
    blocked_domains: Iterable[str],
    aliases: Optional[Mapping[str, Iterable[str]]] = None,
) -> bool:
    """
    Match a URL against a set of blocked domains, including aliases.

    Args:
        url: URL or hostname to check
        blocked_domains: Stored domains of BLOCKED sites
        aliases: Alias table (default: DOMAIN_ALIASES)

    Returns:
        True if any candidate name matches any blocked domain
    """
    hostname = extract_hostname(url)
    candidates = [hostname, *get_domain_aliases(hostname, aliases)]
    blocked = [b.lower() for b in blocked_domains]
    return any(domain_matches(c, b) for b in blocked for c in candidates)


class DomainMatcher:
    """Answers the navigation hook's question against the record store."""

    def __init__(
        self, store: RecordStore, aliases: Optional[Mapping[str, Iterable[str]]] = None
    ) -> None:
        self.store = store
        self.aliases = aliases

    async def is_domain_blocked(self, url: str) -> bool:
        sites = await self.store.list_blocked_sites()
        return matches_any(url, (site.domain for site in sites), self.aliases)
