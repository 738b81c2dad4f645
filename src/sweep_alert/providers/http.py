from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import requests
from requests.exceptions import ConnectionError, ReadTimeout


@dataclass
class HTTPClient:
    user_agent: str
    timeout_s: int = 25
    tries: int = 3
    backoff_s: float = 0.8

    def __post_init__(self) -> None:
        self.s = requests.Session()
        self.s.headers.update(
            {
                "User-Agent": self.user_agent,
                "Accept": "application/json, text/plain;q=0.9, */*;q=0.8",
            }
        )

    def get_json(
        self,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        timeout_s: Optional[int] = None,
    ) -> Any:
        timeout = timeout_s if timeout_s is not None else self.timeout_s
        last_err: Optional[Exception] = None
        for attempt in range(self.tries):
            try:
                r = self.s.get(url, params=params, timeout=timeout)
                r.raise_for_status()
                return r.json()
            except (ReadTimeout, ConnectionError) as e:
                last_err = e
                if attempt < self.tries - 1:
                    time.sleep(self.backoff_s * (2**attempt))
        raise last_err if last_err else RuntimeError("HTTP get_json failed")
