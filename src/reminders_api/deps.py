from __future__ import annotations

from fastapi import Request

from .repositories import Repository


# PUBLIC_INTERFACE
def get_repository(request: Request) -> Repository:
    """Return the repository created for this application instance."""
    return request.app.state.repository
