from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

import requests
from requests import Response
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..entities import WeatherData


logger = logging.getLogger(__name__)


class ProviderError(RuntimeError):
    """Base provider error."""


class QuotaExceeded(ProviderError):
    """Raised when a provider reports a quota/usage limit issue."""


@dataclass
class RequestConfig:
    timeout: float = 5.0
    retries: int = 2
    backoff_factor: float = 0.3
    status_forcelist: Iterable[int] = (500, 502, 503, 504)


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class WeatherProvider:
    """Base class that adds retry/timeouts for HTTP providers."""

    name = "provider"

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        request_config: Optional[RequestConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.request_config = request_config or RequestConfig()
        self.session = session or self._build_session(self.request_config)
        self.clock = clock
        self._log = logging.getLogger(self.__class__.__name__)

    # Public API ---------------------------------------------------------
    def current(self, latitude: float, longitude: float) -> WeatherData:
        raise NotImplementedError

    def hourly(self, latitude: float, longitude: float, hours: int = 24) -> List[WeatherData]:
        raise NotImplementedError

    # Helpers ------------------------------------------------------------
    def _build_session(self, config: RequestConfig) -> requests.Session:
        retry = Retry(
            total=config.retries,
            backoff_factor=config.backoff_factor,
            status_forcelist=tuple(config.status_forcelist),
            allowed_methods=frozenset({"GET"}),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        session = requests.Session()
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        return session

    def _handle_response(self, response: Response) -> Response:
        if response.status_code == 429:
            self._log.warning("Quota exceeded: %s", response.text)
            raise QuotaExceeded("quota exceeded")
        if response.status_code >= 400:
            self._log.error("Provider returned %s: %s", response.status_code, response.text)
            raise ProviderError(f"HTTP {response.status_code}")
        return response

    def _request(self, method: str, url: str, **kwargs) -> Response:
        try:
            response = self.session.request(
                method,
                url,
                timeout=self.request_config.timeout,
                **kwargs,
            )
        except requests.Timeout as exc:
            self._log.error("Request timed out", exc_info=exc)
            raise ProviderError("timeout") from exc
        except requests.RequestException as exc:
            self._log.error("Request failed", exc_info=exc)
            raise ProviderError("request failed") from exc
        return self._handle_response(response)

    def _json(self, response: Response) -> dict:
        try:
            return response.json()
        except ValueError as exc:
            self._log.error("Failed to decode JSON", exc_info=exc)
            raise ProviderError("invalid json") from exc


def safe_float(value: Optional[object], default: Optional[float] = None) -> Optional[float]:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def safe_index(values: Optional[List[object]], index: int, default: Optional[float] = None) -> Optional[float]:
    try:
        value = values[index]  # type: ignore[index]
    except (IndexError, TypeError):
        return default
    return safe_float(value, default)


__all__ = [
    "ProviderError",
    "QuotaExceeded",
    "RequestConfig",
    "WeatherProvider",
    "safe_float",
    "safe_index",
    "utcnow",
]
