"""
Nightscout API client.

Fetches the single most recent glucose entry from a self-hosted Nightscout
instance. Configuration is read from the environment on every call; nothing
is cached between invocations.
"""

import hashlib
import json
import logging
import math
import os
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlsplit

import requests

logger = logging.getLogger(__name__)

ENTRIES_PATH = "/api/v1/entries.json?count=1"

# Upper bound for the whole request: connect, headers and body.
REQUEST_TIMEOUT = 8.0

AUTH_BEARER = "bearer"
AUTH_APISECRET_HASH = "apisecret-hash"

_AUTH_MODE_ALIASES = {
    "bearer": AUTH_BEARER,
    "apisecret-hash": AUTH_APISECRET_HASH,
    "apisecret_hash": AUTH_APISECRET_HASH,
    "apisecret_sha1": AUTH_APISECRET_HASH,
}


class NightscoutError(Exception):
    """Base class for every failure to obtain the latest reading."""


class ConfigError(NightscoutError):
    pass


class AuthError(NightscoutError):
    pass


class HttpStatusError(NightscoutError):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"Nightscout returned status {status_code}.")
        self.status_code = status_code


class EmptyResultError(NightscoutError):
    pass


class ParseError(NightscoutError):
    pass


class NetworkError(NightscoutError):
    pass


class RequestTimeoutError(NightscoutError, TimeoutError):
    pass


@dataclass(frozen=True)
class FetchConfig:
    base_url: str
    token: Optional[str] = None
    auth_mode: str = AUTH_BEARER
    timeout: float = REQUEST_TIMEOUT

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "FetchConfig":
        env = os.environ if environ is None else environ
        mode = (env.get("NIGHTSCOUT_AUTH_MODE") or AUTH_BEARER).strip().lower()
        return cls(
            base_url=(env.get("NIGHTSCOUT_URL") or "").strip().rstrip("/"),
            token=env.get("NIGHTSCOUT_TOKEN") or None,
            auth_mode=_AUTH_MODE_ALIASES.get(mode, AUTH_BEARER),
        )


_FRACTION = re.compile(r"\.(\d+)")
_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _normalize_iso(text: str) -> str:
    """Rewrite a timestamp into a form ``datetime.fromisoformat`` accepts on 3.9.

    Handles a trailing ``Z``, ``+0200`` style offsets and fractions that are
    not exactly 3 or 6 digits long.
    """
    text = text.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _COMPACT_OFFSET.sub(r"\1:\2", text)
    return _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)


@dataclass(frozen=True)
class GlucoseReading:
    """One Nightscout entry. ``value`` is always mg/dL."""

    value: float
    date: Optional[float] = None
    date_string: Optional[str] = None
    direction: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: Any) -> "GlucoseReading":
        if not isinstance(entry, dict):
            raise ParseError("Nightscout entry is not an object.")

        sgv = entry.get("sgv")
        if not _is_number(sgv) or not math.isfinite(sgv):
            raise ParseError(f"Nightscout entry has no usable sgv: {sgv!r}")

        date = entry.get("date")
        if not _is_number(date):
            date = None
        elif not math.isfinite(date):
            raise ParseError(f"Nightscout entry has an invalid date: {date!r}")

        date_string = entry.get("dateString")
        direction = entry.get("direction")
        return cls(
            value=sgv,
            date=date,
            date_string=date_string if isinstance(date_string, str) else None,
            direction=direction if isinstance(direction, str) else None,
        )

    @property
    def timestamp_ms(self) -> Optional[float]:
        """Epoch millis of the reading, preferring ``date`` over ``dateString``."""
        if self.date:
            return self.date
        if not self.date_string:
            return None
        try:
            parsed = datetime.fromisoformat(_normalize_iso(self.date_string))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp() * 1000


def api_secret_digest(token: str) -> str:
    return hashlib.sha1(token.encode("utf-8")).hexdigest()


def build_request(config: FetchConfig) -> Tuple[str, Dict[str, str]]:
    """Return the entries URL and headers for ``config``."""
    base_url = (config.base_url or "").rstrip("/")
    if not base_url:
        raise ConfigError("NIGHTSCOUT_URL is not configured.")

    parts = urlsplit(base_url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ConfigError(f"NIGHTSCOUT_URL is not an http(s) URL: {base_url}")

    headers = {"Accept": "application/json"}
    if config.token:
        if config.auth_mode == AUTH_APISECRET_HASH:
            headers["api-secret"] = api_secret_digest(config.token)
        else:
            headers["Authorization"] = f"Bearer {config.token}"

    return base_url + ENTRIES_PATH, headers


def _download(
    session: requests.Session,
    url: str,
    headers: Dict[str, str],
    timeout: float,
    holder: list,
    cancelled: threading.Event,
) -> bytes:
    resp = session.get(
        url, headers=headers, timeout=timeout, stream=True, allow_redirects=False
    )
    holder.append(resp)
    if cancelled.is_set():
        _abort(resp)
        raise RequestTimeoutError("Nightscout request timed out.")
    try:
        if resp.status_code in (401, 403):
            raise AuthError("Nightscout authentication failed. Check your token.")
        if resp.status_code < 200 or resp.status_code >= 300:
            raise HttpStatusError(resp.status_code)
        return b"".join(resp.iter_content(chunk_size=1024))
    finally:
        resp.close()


def _abort(resp: requests.Response) -> None:
    # Unblocks a read in progress on the worker thread, then drops the connection.
    try:
        resp.raw.shutdown()
    except OSError:
        logger.debug("Socket already closed by the worker")
    resp.close()


def fetch_latest_reading(
    config: FetchConfig,
    session: Optional[requests.Session] = None,
) -> GlucoseReading:
    """Fetch the most recent Nightscout entry.

    Raises a ``NightscoutError`` subclass on any failure. No retry is made.
    The whole exchange runs on a worker thread and races ``config.timeout``;
    if the timer wins, the socket is shut down and the response closed.
    The session is closed before returning when one is created here.
    """
    url, headers = build_request(config)

    owns_session = session is None
    if owns_session:
        session = requests.Session()

    logger.info("Fetching latest entry from %s", config.base_url)
    holder = []
    cancelled = threading.Event()
    executor = ThreadPoolExecutor(max_workers=1)
    try:
        future = executor.submit(
            _download, session, url, headers, config.timeout, holder, cancelled
        )
        body = future.result(timeout=config.timeout)
    except FuturesTimeoutError as exc:
        cancelled.set()
        for resp in holder:
            _abort(resp)
        raise RequestTimeoutError("Nightscout request timed out.") from exc
    except requests.exceptions.Timeout as exc:
        raise RequestTimeoutError("Nightscout request timed out.") from exc
    except requests.exceptions.RequestException as exc:
        raise NetworkError(f"Network error: {exc}") from exc
    finally:
        executor.shutdown(wait=False)
        if owns_session:
            session.close()

    try:
        data = json.loads(body)
    except ValueError as exc:
        raise ParseError("Could not parse Nightscout response.") from exc

    if not isinstance(data, list) or not data:
        raise EmptyResultError("No glucose entries returned from Nightscout.")

    return GlucoseReading.from_entry(data[0])
