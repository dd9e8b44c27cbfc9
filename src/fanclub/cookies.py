"""Request-scoped cookie jar.

Reads come from the incoming request; `forget` queues an expiry that is
written onto the outgoing response by `apply`.
"""

from __future__ import annotations

from collections.abc import Mapping

from starlette.responses import Response


class RequestCookies:
    def __init__(self, incoming: Mapping[str, str] | None = None) -> None:
        self._incoming = dict(incoming or {})
        self._forgotten: list[str] = []

    def has(self, name: str) -> bool:
        return name in self._incoming and name not in self._forgotten

    def get(self, name: str, default: str | None = None) -> str | None:
        if not self.has(name):
            return default
        return self._incoming[name]

    def forget(self, name: str) -> None:
        if name not in self._forgotten:
            self._forgotten.append(name)

    @property
    def forgotten(self) -> list[str]:
        return list(self._forgotten)

    def apply(self, response: Response) -> Response:
        """Expire every forgotten cookie on the response."""
        for name in self._forgotten:
            response.delete_cookie(name)
        return response
