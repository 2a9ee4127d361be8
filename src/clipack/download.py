"""HTTP download helpers for clipack.

Every request is a single blocking call bounded by a timeout. Nothing is
retried: a failure is reported straight back to the caller.
"""

from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from clipack import __version__

# Per-request timeout in seconds
DEFAULT_TIMEOUT = 30

USER_AGENT = f"clipack/{__version__}"


class DownloadError(Exception):
    """Raised when an HTTP request fails or returns a non-200 status."""


def http_get(url: str, headers: dict[str, str] | None = None, timeout: float = DEFAULT_TIMEOUT) -> bytes:
    """GET a URL and return the response body.

    Args:
        url: Absolute http(s) URL.
        headers: Extra request headers.
        timeout: Seconds before the request is abandoned.

    Raises:
        DownloadError: On transport failure, timeout or a non-200 status.
    """
    request = Request(url, headers={"User-Agent": USER_AGENT, **(headers or {})})
    try:
        with urlopen(request, timeout=timeout) as response:  # noqa: S310
            status = response.status
            body = response.read()
    except HTTPError as e:
        detail = e.read().decode(errors="replace").strip()
        msg = f"GET {url} returned status {e.code}"
        if detail:
            msg += f": {detail[:200]}"
        raise DownloadError(msg) from e
    except (URLError, TimeoutError, OSError) as e:
        reason = getattr(e, "reason", e)
        msg = f"GET {url} failed: {reason}"
        raise DownloadError(msg) from e

    if status != 200:
        msg = f"GET {url} returned status {status}"
        raise DownloadError(msg)
    return body


def raw_content_url(url: str) -> str:
    """Rewrite a GitHub ``blob`` page URL to its raw-content equivalent.

    Other URLs are returned unchanged.
    """
    prefix = "https://github.com/"
    if url.startswith(prefix) and "/blob/" in url:
        return "https://raw.githubusercontent.com/" + url[len(prefix):].replace("/blob/", "/", 1)
    return url


def download_content(url: str, timeout: float = DEFAULT_TIMEOUT) -> bytes:
    """Download a file, following GitHub blob links to their raw content."""
    return http_get(raw_content_url(url.strip()), timeout=timeout)
