"""Status-gated writes for tickets and uploads.

The row only changes if its status is still the one we read, so two
requests racing on the same ticket cannot both apply its effect.
"""

import enum
from typing import Any

from sqlalchemy import inspect, update
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.database import Base
from commissions.errors import InvalidState


async def set_status_if(
    db: AsyncSession,
    obj: Base,
    target: enum.Enum,
    expected: enum.Enum | None = None,
    **values: Any,
) -> None:
    """Write obj.status = target if the stored status equals expected (default: obj.status)."""
    model = type(obj)
    pk = inspect(model).primary_key[0]
    ident = getattr(obj, pk.key)
    current = expected if expected is not None else obj.status
    result = await db.execute(
        update(model)
        .where(pk == ident, model.status == current)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidState(f"{model.__name__} {ident} changed state concurrently")
    await db.refresh(obj)
