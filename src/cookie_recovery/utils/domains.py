# src/cookie_recovery/utils/domains.py
from typing import Iterable, List, TypeVar

T = TypeVar("T")


def normalize_query_domain(domain: str) -> str:
    """Reduce a URL or host to the bare domain used for cookie matching.

    ``https://www.example.com:8443/path`` -> ``example.com``
    """
    clean = domain.strip().lower()
    for scheme in ("https://", "http://"):
        if clean.startswith(scheme):
            clean = clean[len(scheme):]
            break
    clean = clean.split("/", 1)[0]
    clean = clean.split(":", 1)[0]
    if clean.startswith("www."):
        clean = clean[len("www."):]
    return clean


def normalize_cookie_domain(domain: str) -> str:
    clean = domain.strip().lower()
    if clean.startswith("."):
        clean = clean[1:]
    return clean


def domain_matches(cookie_domain: str, query: str) -> bool:
    """True if a stored cookie domain belongs to the queried domain.

    Equal after normalization, or either one a suffix of the other.
    """
    cookie = normalize_cookie_domain(cookie_domain)
    wanted = normalize_query_domain(query)
    if not cookie or not wanted:
        return False
    return cookie == wanted or cookie.endswith(wanted) or wanted.endswith(cookie)


def filter_by_domain(cookies: Iterable[T], query: str) -> List[T]:
    return [cookie for cookie in cookies if domain_matches(getattr(cookie, "domain", ""), query)]
