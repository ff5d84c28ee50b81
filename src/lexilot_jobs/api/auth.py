from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException, Request

from ..config import Settings


@dataclass(frozen=True)
class Principal:
    """The already-authenticated caller a request acts for."""
    owner_id: str


class HeaderAuthAdapter:
    """Read the owner identity from a request header.

    Authentication happens upstream (gateway or auth middleware); this only
    trusts the identity header it forwards.
    """

    def __init__(self, header_name: str = "X-User-Id"):
        self.header_name = header_name

    def authenticate(self, request: Request) -> Principal:
        owner_id = (request.headers.get(self.header_name) or "").strip()
        if not owner_id:
            raise HTTPException(status_code=401, detail="User identity is required")
        return Principal(owner_id=owner_id)


def require_principal(request: Request) -> Principal:
    settings: Settings = request.app.state.settings
    return HeaderAuthAdapter(settings.api.owner_header).authenticate(request)
