from __future__ import annotations

import json
from typing import Any
from uuid import UUID

from psycopg2.extras import Json


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


def write_audit_log(
    conn,
    *,
    actor_user_id: UUID | None,
    action: str,
    target_id: str | None,
    metadata: dict[str, Any] | None = None,
) -> None:
    # actor is NULL for background workers
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app.audit_log (actor_user_id, action, target_id, metadata)
            VALUES (%s, %s, %s, %s::jsonb);
            """,
            (
                actor_user_id,
                action,
                target_id,
                Json(metadata or {}, dumps=_dumps),
            ),
        )
