# slackduty/clients/http_client.py
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import ExternalCallError

LOG = logging.getLogger(__name__)


class HttpClient:
    """
    Shared HTTP plumbing for the PagerDuty and Slack clients.

    ``retries`` defaults to 0: every API call is attempted exactly once and
    failures surface to the caller as ExternalCallError.
    """

    def __init__(
        self,
        base_url: str,
        service: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float = 15.0,
        retries: int = 0,
        pool_maxsize: int = 20,
        user_agent: str = "slackduty/0.3",
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.service = service
        self.timeout = float(timeout)
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": user_agent})
        if headers:
            self.session.headers.update(dict(headers))

        if session is None:
            retry = Retry(
                total=retries,
                backoff_factor=0.5,
                status_forcelist=(429, 500, 502, 503, 504),
                allowed_methods=frozenset(["GET", "POST"]),
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=pool_maxsize)
            self.session.mount("http://", adapter)
            self.session.mount("https://", adapter)

    def request_json(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        data: Mapping[str, Any] | None = None,
        json_body: Any = None,
        timeout: float | None = None,
    ) -> Any:
        """Send a request and decode the JSON body, translating every failure to ExternalCallError."""
        url = f"{self.base_url}/{path.lstrip('/')}"
        LOG.debug("%s %s %s params=%s", self.service, method, url, params)
        try:
            resp = self.session.request(
                method,
                url,
                params=params,
                data=data,
                json=json_body,
                timeout=timeout or self.timeout,
            )
        except requests.RequestException as e:
            raise ExternalCallError(self.service, f"{method} {path}: {e}") from e

        if resp.status_code >= 400:
            preview = (resp.text or "")[:200].replace("\n", " ")
            raise ExternalCallError(self.service, f"{method} {path}: {preview}", status=resp.status_code)

        try:
            return resp.json()
        except ValueError as e:
            preview = (resp.text or "")[:200].replace("\n", " ")
            raise ExternalCallError(self.service, f"{method} {path}: invalid JSON body: {preview!r}") from e

    def get_json(self, path: str, *, params: Mapping[str, Any] | None = None, **kwargs: Any) -> Any:
        return self.request_json("GET", path, params=params, **kwargs)

    def post_json(self, path: str, *, data: Mapping[str, Any] | None = None, **kwargs: Any) -> Any:
        return self.request_json("POST", path, data=data, **kwargs)

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            LOG.debug("HttpClient.close() swallow", exc_info=True)
