import re
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from backend.config import get_float, get_int
from .errors import (
    ExtractedTextTooShort,
    FetchError,
    FetchTimeout,
    InvalidUrl,
    UnsupportedContentType,
)

HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/122.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "Accept-Encoding": "gzip, deflate",
}

MIN_FETCH_TIMEOUT = 10.0
MAX_FETCH_TIMEOUT = 15.0
MAX_TEXT_CHARS = 15000
MIN_TEXT_CHARS = 100
STRIP_TAGS = ["script", "style", "nav", "header", "footer", "aside", "iframe", "noscript"]
CONNECT_TIMEOUT = 5.0
CHUNK_SIZE = 4096

_session = None


def _get_session() -> requests.Session:
    global _session
    if _session is not None:
        return _session

    session = requests.Session()
    retries = Retry(total=0, allowed_methods=["GET"])
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    _session = session
    return _session


def fetch_timeout() -> float:
    raw = get_float("FETCH_TIMEOUT", 12.0)
    return min(MAX_FETCH_TIMEOUT, max(MIN_FETCH_TIMEOUT, raw))


def validate_url(url) -> str:
    if not url or not isinstance(url, str):
        raise InvalidUrl("url is required.")
    url = url.strip()
    try:
        p = urlparse(url)
    except ValueError:
        raise InvalidUrl("Invalid URL format.")
    if p.scheme not in ("http", "https") or not p.netloc:
        raise InvalidUrl("Invalid URL format.")
    return url


@dataclass
class FetchedPage:
    url: str
    html: str
    status_code: int
    content_type: str
    elapsed_ms: int


def _decode_body(body: bytes, content_type: str, encoding: str | None) -> str:
    charset = encoding if "charset=" in content_type.lower() and encoding else "utf-8"
    try:
        return body.decode(charset, errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


def _download(url: str, timeout: float, deadline: float, max_bytes: int, pending: dict) -> tuple:
    session = _get_session()
    connect_timeout = min(timeout, CONNECT_TIMEOUT)
    try:
        response = session.get(url, headers=HEADERS, timeout=(connect_timeout, timeout), stream=True)
    except requests.exceptions.Timeout:
        print(f"FETCH url={url} status=timeout")
        raise FetchTimeout(f"Request timed out after {timeout:g}s", "Request timed out.")
    except requests.exceptions.RequestException as e:
        print(f"FETCH url={url} status=error err={type(e).__name__}")
        raise FetchError(f"Failed to fetch URL: {e}")
    pending["response"] = response

    with response:
        if not response.ok:
            raise FetchError(
                f"URL returned {response.status_code} {response.reason or ''}".strip(),
                http_status=response.status_code,
            )

        content_type = response.headers.get("content-type") or ""
        if "text/html" not in content_type.lower():
            raise UnsupportedContentType(
                f"Unsupported content type: {content_type or 'missing'}",
                "Unsupported content type",
            )

        chunks: list[bytes] = []
        size = 0
        try:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if time.monotonic() > deadline:
                    raise FetchTimeout(f"Request timed out after {timeout:g}s", "Request timed out.")
                chunks.append(chunk)
                size += len(chunk)
                if size >= max_bytes:
                    print(f"FETCH_BODY_CAPPED url={url} bytes={size}")
                    break
        except requests.exceptions.Timeout:
            raise FetchTimeout(f"Request timed out after {timeout:g}s", "Request timed out.")
        except requests.exceptions.RequestException as e:
            raise FetchError(f"Failed to fetch URL: {e}")

        html = _decode_body(b"".join(chunks), content_type, response.encoding)

    return response, content_type, html, size


def _abandon(pending: dict, url: str) -> None:
    response = pending.get("response")
    print(f"FETCH url={url} status=timeout abandoned={response is not None}")
    if response is None:
        return
    try:
        response.close()
    except Exception as e:
        print(f"FETCH_CLOSE_FAILED url={url} err={type(e).__name__}", file=sys.stderr)


def fetch_html(url: str, timeout: float | None = None) -> FetchedPage:
    """
    GET an article page. The whole exchange, connect and body included, must
    finish within `timeout` seconds. The download runs on a worker thread; once
    the deadline passes the caller gets FetchTimeout and the response is closed
    under the worker.
    """
    timeout = timeout or fetch_timeout()
    max_bytes = get_int("FETCH_MAX_BYTES", 5_000_000)
    start_ts = time.monotonic()
    deadline = start_ts + timeout
    pending: dict = {}

    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(_download, url, timeout, deadline, max_bytes, pending)
    try:
        response, content_type, html, size = future.result(timeout=timeout)
    except FutureTimeout:
        _abandon(pending, url)
        raise FetchTimeout(f"Request timed out after {timeout:g}s", "Request timed out.")
    finally:
        executor.shutdown(wait=False)

    elapsed_ms = int((time.monotonic() - start_ts) * 1000)
    print(
        f"FETCH url={url} status={response.status_code} "
        f"content-type={content_type} bytes={size} elapsed={elapsed_ms}ms"
    )
    return FetchedPage(
        url=url,
        html=html,
        status_code=response.status_code,
        content_type=content_type,
        elapsed_ms=elapsed_ms,
    )


def extract_title_from_soup(soup: BeautifulSoup) -> Optional[str]:
    og = soup.find("meta", attrs={"property": "og:title"})
    if og and (og.get("content") or "").strip():
        return og["content"].strip()
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    h1 = soup.find("h1")
    if h1:
        return h1.get_text(strip=True) or None
    return None


@dataclass
class SanitizedPage:
    text: str
    title: Optional[str]
    original_chars: int
    truncated: bool


def sanitize_html(html: str, max_chars: int | None = None) -> SanitizedPage:
    max_chars = max_chars or get_int("INGEST_MAX_CHARS", MAX_TEXT_CHARS)
    soup = BeautifulSoup(html or "", "html.parser")
    title = extract_title_from_soup(soup)

    for tag in soup(STRIP_TAGS):
        tag.decompose()

    text = soup.get_text(separator=" ")
    text = re.sub(r"\s+", " ", text).strip()
    original_chars = len(text)

    truncated = original_chars > max_chars
    if truncated:
        text = text[:max_chars]
        print(f"INGEST_CONTENT_TRUNCATED chars={original_chars} kept={max_chars}")

    if len(text) < MIN_TEXT_CHARS:
        raise ExtractedTextTooShort(f"Extracted text too short ({len(text)} chars)")

    return SanitizedPage(
        text=text,
        title=title,
        original_chars=original_chars,
        truncated=truncated,
    )
