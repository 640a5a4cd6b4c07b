from __future__ import annotations

import uuid


def make_headers(role: str = "admin", *, user_id: uuid.UUID | None = None) -> dict[str, str]:
    """Construct the identity headers the API gateway forwards."""
    return {
        "X-User-Id": str(user_id or uuid.uuid4()),
        "X-User-Role": role,
    }
