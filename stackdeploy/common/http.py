"""HTTP client for readiness probes."""

from __future__ import annotations

from dataclasses import dataclass
from types import TracebackType

import requests

from stackdeploy.common.constants import USER_AGENT


@dataclass(frozen=True)
class TimeoutConfig:
    connect: float = 5.0
    read: float = 10.0


class HttpClient:
    def __init__(self, *, timeout: TimeoutConfig | None = None) -> None:
        self.timeout = timeout or TimeoutConfig()
        self.session = requests.Session()

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _headers(self, headers: dict[str, str] | None) -> dict[str, str]:
        out = {"User-Agent": USER_AGENT, "Accept": "*/*"}
        if headers:
            out.update(headers)
        return out

    def probe(self, url: str, *, headers: dict[str, str] | None = None) -> bool:
        """Return True when ``url`` answers with a non-error status.

        Connection failures and timeouts mean "not ready yet", not an error.
        """
        try:
            response = self.session.request(
                method="GET",
                url=url,
                headers=self._headers(headers),
                timeout=(self.timeout.connect, self.timeout.read),
                allow_redirects=False,
            )
        except requests.RequestException:
            return False
        return response.status_code < 400
