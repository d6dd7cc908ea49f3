# Redirect URI normalization and containment.
# Created: 2026-10-19
#
# A client may ask for any redirect URI that lives under its registered
# default: same scheme, host and port, and a path that extends the default's
# path segment by segment. Comparisons are exact; nothing is lowercased and
# no default ports are inferred.

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import unquote, urlencode, urlsplit

from ohmage_oauth.errors import InvalidArgumentError


@dataclass(frozen=True)
class _Parts:
    scheme: str
    host: str | None
    port: int | None
    path: str
    query: str
    fragment: str
    netloc: str


def _split(uri: str) -> _Parts:
    # urlsplit lowercases the scheme, so it is read from the raw string.
    scheme, sep, _ = uri.partition(":")
    if not sep or not scheme:
        raise InvalidArgumentError(f"The URI is missing a scheme: {uri}")
    parts = urlsplit(uri)
    host, port = _split_authority(parts.netloc, uri)
    return _Parts(
        scheme=scheme,
        host=host,
        port=port,
        path=parts.path,
        query=parts.query,
        fragment=parts.fragment,
        netloc=parts.netloc,
    )


def _split_authority(netloc: str, uri: str) -> tuple[str | None, int | None]:
    if not netloc:
        return None, None
    hostport = netloc.rpartition("@")[2]
    if hostport.startswith("["):
        host, _, rest = hostport.partition("]")
        host += "]"
        port_text = rest[1:] if rest.startswith(":") else ""
    else:
        host, _, port_text = hostport.partition(":")
    if not port_text:
        return host or None, None
    if not port_text.isdigit():
        raise InvalidArgumentError(f"The URI has an invalid port: {uri}")
    return host or None, int(port_text)


def _dot_segment(segment: str) -> str | None:
    # Browsers also resolve percent-encoded dots such as "%2e%2e".
    decoded = unquote(segment)
    return decoded if decoded in (".", "..") else None


def _remove_dot_segments(path: str) -> str:
    segments = path.split("/")
    out: list[str] = []
    for segment in segments:
        dot = _dot_segment(segment)
        if dot == ".":
            continue
        if dot == "..":
            if len(out) > 1 or (out and out[0] != ""):
                out.pop()
            continue
        out.append(segment)
    result = "/".join(out)
    if _dot_segment(segments[-1]):
        result += "/"
    if path.startswith("/") and not result.startswith("/"):
        result = "/" + result
    return result


def _segments(path: str) -> list[str]:
    # Trailing empty segments carry no meaning: "/cb/" is the same as "/cb".
    segments = path.split("/")
    while segments and segments[-1] == "":
        segments.pop()
    return segments


def normalize_uri(uri: str) -> str:
    """Resolve ``.`` and ``..`` path segments, encoded or not, of an absolute URI."""
    parts = _split(uri.strip())
    if parts.host is None:
        raise InvalidArgumentError(f"The redirect URI must be absolute: {uri}")
    result = f"{parts.scheme}://{parts.netloc}{_remove_dot_segments(parts.path)}"
    if parts.query:
        result += f"?{parts.query}"
    if parts.fragment:
        result += f"#{parts.fragment}"
    return result


def supersedes(base: str, candidate: str) -> None:
    """Raise ``InvalidArgumentError`` unless *candidate* lives under *base*."""
    b = _split(base)
    c = _split(candidate)

    if b.scheme != c.scheme:
        raise InvalidArgumentError(
            f"The default scheme, '{b.scheme}', doesn't match the given scheme: {c.scheme}"
        )
    if b.host != c.host:
        raise InvalidArgumentError(
            f"The default host, '{b.host}', doesn't match the given host: {c.host}"
        )
    if b.port != c.port:
        raise InvalidArgumentError(
            f"The default port, '{b.port}', doesn't match the given port: {c.port}"
        )

    base_segments = _segments(b.path)
    candidate_segments = _segments(c.path)
    if base_segments and not c.path:
        raise InvalidArgumentError(
            f"The given path is not a sub-path of the default path: {b.path}"
        )
    if len(base_segments) > len(candidate_segments):
        raise InvalidArgumentError("The given path is not as long as the default path.")
    for expected, actual in zip(base_segments, candidate_segments):
        if expected != actual:
            raise InvalidArgumentError("The given path diverges from the default path.")


def with_query(uri: str, params: dict[str, str | None]) -> str:
    """Append *params* to *uri*, keeping any query it already has."""
    params = {k: v for k, v in params.items() if v is not None}
    if not params:
        return uri
    base, sep, fragment = uri.partition("#")
    joiner = "&" if "?" in base else "?"
    if base.endswith(("?", "&")):
        joiner = ""
    result = f"{base}{joiner}{urlencode(params)}"
    return f"{result}#{fragment}" if sep else result
