"""
Recovery of submissions that failed to persist.

Before a confirmed transaction is handed to the processor, its four fields
are saved as PartialTransactionData. The snapshot is dropped once the
transaction is stored or the user discards it. Until then the user can
retry: each retry restores the snapshot into a fresh CONFIRM session, and
after MAX_RETRY_COUNT retries the snapshot is dumped to the user and deleted.
"""

import logging
from typing import Optional

from catatbot.config import MAX_RETRY_COUNT
from catatbot.database.models import MenuState, PartialTransactionData, Session
from catatbot.errors import SessionIntegrityError, ValidationError
from catatbot.utils.formatters import (
    format_confirmation,
    format_nothing_to_retry,
    format_recovery_abandoned,
    format_recovery_restored,
)
from catatbot.utils.parsers import validate_amount

logger = logging.getLogger(__name__)


class RecoveryManager:

    def __init__(self, session_store, partial_store, max_retries: int = MAX_RETRY_COUNT):
        self.sessions = session_store
        self.partials = partial_store
        self.max_retries = max_retries

    async def snapshot(self, session: Session) -> PartialTransactionData:
        """Save the session's transaction fields ahead of a submission attempt."""
        data = PartialTransactionData.from_session(session)
        await self.partials.save(session.user_id, data)
        return data

    async def pending(self, user_id: int) -> Optional[PartialTransactionData]:
        return await self.partials.load(user_id)

    async def discard(self, user_id: int) -> None:
        await self.partials.clear(user_id)

    async def has_snapshot(self, user_id: int) -> bool:
        return await self.partials.exists(user_id)

    async def count_resubmission(self, session: Session) -> Optional[list[str]]:
        """Count a confirm sent straight after a failed submission as a retry.

        Advances session.retry_count in place and returns None while attempts
        remain. Past the limit the snapshot and session are dropped and the
        abandonment replies are returned instead.
        """
        partial = await self.partials.load(session.user_id)
        attempt = (partial.retry_count if partial else session.retry_count) + 1
        if attempt > self.max_retries:
            logger.warning("Recovery abandoned after %d resubmissions: user_id=%d",
                           attempt - 1, session.user_id)
            await self.partials.clear(session.user_id)
            await self.sessions.clear(session.user_id)
            return [format_recovery_abandoned(partial or PartialTransactionData.from_session(session))]

        session.retry_count = attempt
        session.last_submit_failed = False
        logger.info("Resubmission counted as retry: user_id=%d attempt=%d/%d",
                    session.user_id, attempt, self.max_retries)
        return None

    async def retry(self, user_id: int) -> list[str]:
        """Restore the snapshot for re-confirmation, or abandon it past the limit."""
        partial = await self.partials.load(user_id)
        if partial is None:
            return [format_nothing_to_retry()]

        attempt = partial.retry_count + 1
        if attempt > self.max_retries:
            logger.warning("Recovery abandoned after %d retries: user_id=%d",
                           partial.retry_count, user_id)
            await self.partials.clear(user_id)
            await self.sessions.clear(user_id)
            return [format_recovery_abandoned(partial)]

        if partial.transaction_type is None or partial.category is None or partial.amount is None:
            await self.partials.clear(user_id)
            raise SessionIntegrityError(f"Recovery snapshot for user_id={user_id} is incomplete")
        try:
            amount = validate_amount(partial.amount)
        except ValidationError as e:
            await self.partials.clear(user_id)
            raise SessionIntegrityError(f"Recovery snapshot amount is invalid: {e.message}") from e

        session = Session(
            user_id=user_id,
            menu_state=MenuState.CONFIRM,
            transaction_type=partial.transaction_type,
            category=partial.category,
            amount=partial.amount,
            description=partial.description,
            retry_count=attempt,
        )
        await self.sessions.set(user_id, session)
        partial.retry_count = attempt
        await self.partials.save(user_id, partial)
        logger.info("Recovery restored: user_id=%d attempt=%d/%d",
                    user_id, attempt, self.max_retries)

        return [
            format_recovery_restored(attempt),
            format_confirmation(
                partial.transaction_type, partial.category, amount, partial.description
            ),
        ]
