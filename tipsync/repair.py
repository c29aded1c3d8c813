"""
Author-data repair pass.

Tips can be stored with a blank author snapshot when they are created
before the user's profile has loaded. This pass fills those snapshots
from the current user, marks the tips unsynced, and pushes them.

It is a best-effort compensator, not a guarantee: with no known user it
does nothing and reports zero repairs.
"""

import logging
from typing import Optional

from .errors import LocalStorageError, Result
from .protocol import LocalTipStoreProtocol
from .sync import SyncEngine
from .types import User, is_blank

logger = logging.getLogger(__name__)


def repair_missing_author_data(
    tip_store: LocalTipStoreProtocol,
    engine: SyncEngine,
    current_user: Optional[User],
    *,
    push: bool = True,
) -> Result:
    """
    Backfill blank author fields on active tips from ``current_user``.

    Every active tip (synced or not) whose author id or author name is
    blank gets the user's id, name and photo, and is marked unsynced.
    If anything was repaired and ``push`` is set, a push pass follows.

    Returns:
        Result with the number of tips repaired
    """
    if current_user is None or is_blank(current_user.id) or is_blank(current_user.name):
        logger.info("Author repair skipped: no current user")
        return Result.success(0)

    repaired = 0
    try:
        candidates = [tip for tip in tip_store.list_active() if not tip.has_author]
        for tip in candidates:
            # Conditional update: edits made since the listing are kept
            if tip_store.fill_missing_author(
                tip.id, current_user.id, current_user.name, current_user.photo_ref
            ):
                logger.info("Repaired author data on tip %s", tip.id)
                repaired += 1
    except LocalStorageError as e:
        logger.error("Author repair failed: %s", e)
        return Result.from_exception(e)

    if not repaired or not push:
        return Result.success(repaired)

    logger.info("Repaired %d tips, pushing", repaired)
    pushed = engine.push_all_unsynced()
    if not pushed.ok:
        logger.warning("Push after author repair failed: %s", pushed.failure)
    return Result.success(repaired)
