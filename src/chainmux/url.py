from typing import NamedTuple


class ParsedURL(NamedTuple):
    path: str
    query: str | None  # "a=1&b=2"
    search: str | None  # "?a=1&b=2"


def parse_url(url: str) -> ParsedURL:
    """Split a request target into path, query and search.

    Only a "?" after the first character starts the query, so "?" on its own is
    treated as a path.
    """
    query_index = url.find("?", 1)
    if query_index == -1:
        return ParsedURL(url, None, None)
    search = url[query_index:]
    return ParsedURL(url[:query_index], search[1:], search)


def first_path_segment(path: str) -> str:
    """Return "/foo" for "/foo/bar", or the whole path if there is no second slash."""
    second_slash = path.find("/", 1)
    return path[:second_slash] if second_slash > 1 else path


def ensure_leading_slash(path: str) -> str:
    return path if path.startswith("/") else f"/{path}"
