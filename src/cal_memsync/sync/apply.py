"""Apply classified calendar changes to the memory sink.

Provides :func:`apply_change` for a single record and :func:`apply_changes`
for a sequence.  Every record is applied independently: a failing record
is logged and counted, and the remaining records are still processed.

Records are dispatched on their ``change_type``:

- ``deleted`` -- :meth:`MemorySink.delete` by event id.
- ``created`` / ``updated`` -- the event is mapped to a memory entry and
  passed to :meth:`MemorySink.upsert`, keyed by the event id.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from cal_memsync.models.sync import ChangeRecord, ChangeType
from cal_memsync.vault.client import MemorySink
from cal_memsync.vault.mapper import map_to_memory_entry

logger = logging.getLogger(__name__)


async def apply_change(
    record: ChangeRecord,
    user_id: str,
    sink: MemorySink,
    calendar_id: str | None = None,
) -> bool:
    """Apply one record to *sink*.

    Returns:
        ``True`` if the sink accepted the change.  ``False`` if it
        refused or anything raised -- exceptions never escape.
    """
    logger.info(
        "Processing calendar %s for user %s, event: %s",
        record.change_type.value,
        user_id,
        record.event_id,
    )
    try:
        if record.change_type is ChangeType.DELETED:
            return bool(await sink.delete(user_id, record.event_id))

        entry = map_to_memory_entry(record.event, record.change_type, calendar_id)
        return bool(await sink.upsert(user_id, entry))

    except Exception as exc:
        logger.error(
            "Failed to apply %s of event %s for user %s: %s",
            record.change_type.value,
            record.event_id,
            user_id,
            exc,
        )
        return False


async def apply_changes(
    records: Iterable[ChangeRecord],
    user_id: str,
    sink: MemorySink,
    calendar_id: str | None = None,
) -> int:
    """Apply *records* sequentially, in order.

    Returns:
        The number of records the sink accepted.
    """
    applied = 0
    for record in records:
        if await apply_change(record, user_id, sink, calendar_id):
            applied += 1
        else:
            logger.error("Failed to sync event %s for user %s", record.event_id, user_id)
    return applied
