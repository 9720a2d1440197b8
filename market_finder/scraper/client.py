import logging
import random
import time
from dataclasses import dataclass
from typing import Protocol

import requests
from bs4 import UnicodeDammit

from market_finder.config import SETTINGS, Settings


logger = logging.getLogger(__name__)

BACKOFF_JITTER_SECONDS = 0.1
LEGACY_ENCODINGS = {"", "iso-8859-1", "latin-1", "cp1252"}


class HttpRequestError(Exception):
    def __init__(
        self,
        message: str,
        *,
        url: str,
        status_code: int | None = None,
        retryable: bool = False,
        error_kind: str | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.retryable = retryable
        self.error_kind = error_kind


@dataclass(frozen=True)
class FetchResult:
    status: int
    body: str
    url: str


class Fetcher(Protocol):
    def fetch(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        attempts: int | None = None,
    ) -> FetchResult: ...


def _decode_body(response: requests.Response) -> str:
    current_encoding = (response.encoding or "").lower()
    if current_encoding not in LEGACY_ENCODINGS:
        return response.text
    decoded = UnicodeDammit(response.content, is_html=True).unicode_markup
    return decoded if decoded is not None else response.text


class HttpClient:
    def __init__(self, settings: Settings = SETTINGS, session: requests.Session | None = None) -> None:
        self._settings = settings
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": settings.user_agent})

    def fetch(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        attempts: int | None = None,
    ) -> FetchResult:
        response = self._request_with_retries(
            url,
            headers=headers,
            timeout=timeout or self._settings.request_timeout_seconds,
            attempts=attempts,
        )
        return FetchResult(status=response.status_code, body=_decode_body(response), url=str(response.url))

    def close(self) -> None:
        self._session.close()

    def _request_with_retries(
        self,
        url: str,
        *,
        headers: dict[str, str] | None,
        timeout: float,
        attempts: int | None = None,
    ) -> requests.Response:
        max_retries = max(1, attempts or self._settings.max_retries)
        last_error: HttpRequestError | None = None

        for attempt in range(1, max_retries + 1):
            try:
                response = self._session.get(url, headers=headers, timeout=timeout, allow_redirects=True)

                if response.status_code >= 500:
                    raise HttpRequestError(
                        f"HTTP {response.status_code}",
                        url=url,
                        status_code=response.status_code,
                        retryable=True,
                        error_kind="http_5xx",
                    )

                if response.status_code >= 400:
                    raise HttpRequestError(
                        f"HTTP {response.status_code}",
                        url=url,
                        status_code=response.status_code,
                        retryable=False,
                        error_kind="http_4xx",
                    )

                return response

            except HttpRequestError as exc:
                last_error = exc
            except requests.Timeout as exc:
                last_error = HttpRequestError(str(exc), url=url, retryable=True, error_kind="timeout")
            except requests.ConnectionError as exc:
                last_error = HttpRequestError(str(exc), url=url, retryable=True, error_kind="connection")
            except requests.RequestException as exc:
                last_error = HttpRequestError(str(exc), url=url, retryable=False, error_kind="request")

            if not last_error.retryable or attempt >= max_retries:
                break
            self._sleep_retry(url, attempt, max_retries, last_error)

        if last_error is None:
            raise HttpRequestError("Unknown HTTP error", url=url, retryable=False)
        raise last_error

    def _sleep_retry(self, url: str, attempt: int, max_retries: int, exc: Exception) -> None:
        sleep_seconds = (self._settings.backoff_seconds * (2 ** (attempt - 1))) + random.uniform(
            0.0, BACKOFF_JITTER_SECONDS
        )
        logger.warning(
            "Request failed (%s/%s) for %s: %s. Retrying in %.2fs",
            attempt,
            max_retries,
            url,
            exc,
            sleep_seconds,
        )
        time.sleep(sleep_seconds)
