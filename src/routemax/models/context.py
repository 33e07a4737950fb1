"""Request-scoped context passed explicitly into services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True, frozen=True)
class RequestContext:
    """The authenticated user and the data-access handle for one request."""

    user_id: str
    repository: Any
