import os
import re
import time

import requests
from requests.exceptions import ConnectionError, ConnectTimeout, HTTPError, ReadTimeout, Timeout

from backend.config import get_int, get_str

DEFAULT_BASE_URL = "https://api.anthropic.com/v1"
DEFAULT_MODEL = "claude-sonnet-4-20250514"
ANTHROPIC_VERSION = "2023-06-01"
CONNECT_TIMEOUT = 10

_FENCE_OPEN_RE = re.compile(r"```(?:json)?\s*", re.I)


class LLMUnavailable(Exception):
    pass


class LLMError(Exception):
    pass


class LLMNotConfigured(LLMError):
    pass


def strip_code_fences(text: str) -> str:
    text = _FENCE_OPEN_RE.sub("", text or "")
    return text.replace("```", "").strip()


def _error_detail(resp: requests.Response | None) -> str | None:
    if resp is None:
        return None
    try:
        data = resp.json() or {}
    except ValueError:
        return None
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict):
        return err.get("message")
    return None


def anthropic_messages(
    system: str,
    user: str,
    max_tokens: int = 2000,
    model: str | None = None,
    timeout: int | None = None,
    retries: int = 1,
) -> str:
    """
    One Messages API call. Returns the text of the first content block.

    Raises LLMNotConfigured when the API key is missing, LLMUnavailable on
    transport failures and LLMError on HTTP errors or an empty completion.
    """
    api_key = os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        raise LLMNotConfigured("ANTHROPIC_API_KEY not configured")

    base_url = get_str("ANTHROPIC_BASE_URL", DEFAULT_BASE_URL).rstrip("/")
    model_name = model or get_str("ANTHROPIC_MODEL", DEFAULT_MODEL)
    read_timeout = timeout or get_int("ANTHROPIC_TIMEOUT", 120)

    payload = {
        "model": model_name,
        "max_tokens": max_tokens,
        "system": system,
        "messages": [{"role": "user", "content": user}],
    }
    headers = {
        "x-api-key": api_key,
        "anthropic-version": ANTHROPIC_VERSION,
        "content-type": "application/json",
    }

    last_exc: Exception | None = None
    for attempt in range(retries + 1):
        try:
            resp = requests.post(
                f"{base_url}/messages",
                json=payload,
                headers=headers,
                timeout=(CONNECT_TIMEOUT, read_timeout),
            )
            resp.raise_for_status()
            data = resp.json() or {}
            break

        except (ConnectTimeout, ConnectionError) as e:
            last_exc = e
            if attempt < retries:
                time.sleep(0.5)
                continue
            raise LLMUnavailable(f"anthropic_connection_error: {e}") from e

        except (ReadTimeout, Timeout) as e:
            raise LLMUnavailable(f"anthropic_timeout: {e}") from e

        except HTTPError as e:
            last_exc = e
            resp = getattr(e, "response", None)
            status = getattr(resp, "status_code", None)
            if status and status >= 500 and attempt < retries:
                time.sleep(0.5)
                continue
            detail = _error_detail(resp) or str(e)
            raise LLMError(f"anthropic_http_error status={status}: {detail}") from e

        except ValueError as e:
            raise LLMError(f"anthropic_bad_json: {e}") from e
    else:
        raise LLMUnavailable(f"anthropic_failed: {last_exc}") from last_exc

    blocks = data.get("content") or []
    text = ""
    if blocks and isinstance(blocks[0], dict):
        text = (blocks[0].get("text") or "").strip()
    if not text:
        raise LLMError("Empty response from Anthropic")
    return text
