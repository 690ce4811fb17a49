"""
Transaction-entry workflow: the per-user state machine behind chat input.

    MAIN → TRANSACTION_TYPE → CATEGORY → AMOUNT → CONFIRM → (submitted)

From CONFIRM the user may edit one field at a time; an edit either commits
(back to CONFIRM with the new value) or is cancelled (back to CONFIRM with
the snapshot restored). "batal" outside an edit drops the whole flow.

Every message from a user is handled under that user's lock, so the
session read-modify-write of one message finishes before the next begins.
Handlers return the list of replies to send, in order.
"""

import logging
from typing import Optional

from catatbot.config import (
    BACK_WORDS,
    CANCEL_WORDS,
    CONFIRM_WORDS,
    QUICK_START_MAP,
    RECOVERY_CONTINUE_WORDS,
    RECOVERY_DISCARD_WORDS,
    RETRY_WORDS,
    START_WORDS,
    TRANSACTION_TYPE_MAP,
)
from catatbot.database.models import (
    EditField,
    MenuState,
    Session,
    TransactionCandidate,
    TransactionType,
)
from catatbot.errors import SessionIntegrityError, TransientPersistenceError, ValidationError
from catatbot.services.processor import TransactionProcessor
from catatbot.services.recovery import RecoveryManager
from catatbot.utils.formatters import (
    format_amount_prompt,
    format_cancel_message,
    format_category_list,
    format_confirmation,
    format_edit_cancelled,
    format_edit_prompt,
    format_invalid_amount,
    format_invalid_description,
    format_recovery_discarded,
    format_recovery_offer,
    format_session_invalid,
    format_submit_failed,
    format_submit_rejected,
    format_success,
    format_transaction_type_menu,
    format_unknown_confirm_input,
    format_welcome,
)
from catatbot.utils.locks import KeyedLock
from catatbot.utils.parsers import (
    normalize_command,
    parse_edit_command,
    split_amount_and_description,
    validate_amount,
    validate_description,
)

logger = logging.getLogger(__name__)


class WorkflowEngine:

    def __init__(
        self,
        session_store,
        categories,
        processor: TransactionProcessor,
        recovery: RecoveryManager,
        locks: Optional[KeyedLock] = None,
    ):
        self.sessions = session_store
        self.categories = categories
        self.processor = processor
        self.recovery = recovery
        self.locks = locks or KeyedLock()
        self._state_handlers = {
            MenuState.TRANSACTION_TYPE: self._handle_transaction_type,
            MenuState.CATEGORY: self._handle_category,
            MenuState.AMOUNT: self._handle_amount,
            MenuState.CONFIRM: self._handle_confirm,
        }

    # ------------------------------------------------------------------
    # Entry points (each holds the user's lock)
    # ------------------------------------------------------------------

    async def handle_message(self, user_id: int, text: str, name: Optional[str] = None) -> list[str]:
        """Route one free-text message and return the replies."""
        async with self.locks.hold(user_id):
            try:
                return await self._route(user_id, text, name)
            except SessionIntegrityError as e:
                return await self._reset_invalid(user_id, e)

    async def start_transaction(self, user_id: int) -> list[str]:
        async with self.locks.hold(user_id):
            return await self._start(user_id)

    async def cancel(self, user_id: int) -> list[str]:
        async with self.locks.hold(user_id):
            return await self._cancel(user_id)

    async def retry(self, user_id: int) -> list[str]:
        async with self.locks.hold(user_id):
            try:
                return await self.recovery.retry(user_id)
            except SessionIntegrityError as e:
                return await self._reset_invalid(user_id, e)

    async def discard_user_state(self, user_id: int) -> bool:
        """Drop session and recovery snapshot (account deactivated).

        Only users who were once allowed can have stored state, so for any
        other sender this issues reads and no DELETE. Returns True if
        something was dropped.
        """
        async with self.locks.hold(user_id):
            has_session = await self.sessions.exists(user_id)
            has_snapshot = await self.recovery.has_snapshot(user_id)
            if has_session:
                await self.sessions.clear(user_id)
            if has_snapshot:
                await self.recovery.discard(user_id)
        if has_session or has_snapshot:
            logger.info("Discarded state of deactivated user_id=%d", user_id)
        return has_session or has_snapshot

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def _route(self, user_id: int, text: str, name: Optional[str]) -> list[str]:
        command = normalize_command(text)
        session = await self._load_session(user_id)

        if session is not None and session.is_editing:
            return await self._handle_edit(session, text, command)
        if command in CANCEL_WORDS:
            return await self._cancel(user_id)
        if command in RETRY_WORDS:
            return await self.recovery.retry(user_id)

        if session is None:
            session = Session(user_id=user_id)
        logger.debug("Routing user_id=%d state=%s", user_id, session.menu_state.value)
        if session.menu_state == MenuState.MAIN:
            return await self._handle_main(session, command, name)
        return await self._state_handlers[session.menu_state](session, text, command)

    async def _load_session(self, user_id: int) -> Optional[Session]:
        try:
            return await self.sessions.get(user_id)
        except ValueError as e:
            # Stored editing session without its snapshot
            raise SessionIntegrityError(f"Stored session for user_id={user_id} is corrupt: {e}") from e

    async def _reset_invalid(self, user_id: int, error: SessionIntegrityError) -> list[str]:
        logger.warning("Session integrity error for user_id=%d: %s", user_id, error.message)
        await self.sessions.clear(user_id)
        return [format_session_invalid()]

    # ------------------------------------------------------------------
    # State handlers
    # ------------------------------------------------------------------

    async def _handle_main(self, session: Session, command: str, name: Optional[str]) -> list[str]:
        user_id = session.user_id
        quick_type = QUICK_START_MAP.get(command)
        if quick_type:
            return await self._choose_type(session, TransactionType(quick_type))
        if command in START_WORDS:
            return await self._start(user_id)

        partial = await self.recovery.pending(user_id)
        if partial is not None:
            if command in RECOVERY_CONTINUE_WORDS:
                return await self.recovery.retry(user_id)
            if command in RECOVERY_DISCARD_WORDS:
                await self.recovery.discard(user_id)
                logger.info("Recovery snapshot discarded by user_id=%d", user_id)
                return [format_recovery_discarded()]
            return [format_recovery_offer(partial)]

        await self.sessions.set(user_id, Session(user_id=user_id))
        return [format_welcome(name)]

    async def _handle_transaction_type(self, session: Session, text: str, command: str) -> list[str]:
        if command in BACK_WORDS:
            await self.sessions.set(session.user_id, Session(user_id=session.user_id))
            return [format_welcome()]

        tx_type = TRANSACTION_TYPE_MAP.get(command)
        if tx_type is None:
            return [format_transaction_type_menu()]
        return await self._choose_type(session, TransactionType(tx_type))

    async def _handle_category(self, session: Session, text: str, command: str) -> list[str]:
        tx_type = self._require(session, "transaction_type")
        category = await self.categories.resolve(text, tx_type)
        if category is None:
            logger.info("Category not matched: user_id=%d input=%r", session.user_id, text)
            options = await self.categories.list_active(tx_type)
            return [format_category_list(options, tx_type, not_found=True)]

        await self.sessions.update(
            session.user_id, {"menu_state": MenuState.AMOUNT, "category": category.name}
        )
        return [format_amount_prompt(category.name)]

    async def _handle_amount(self, session: Session, text: str, command: str) -> list[str]:
        self._require(session, "transaction_type", "category")
        raw_amount, note = split_amount_and_description(text)
        try:
            validate_amount(raw_amount)
        except ValidationError as e:
            logger.info("Invalid amount from user_id=%d: %s", session.user_id, e.message)
            return [format_invalid_amount()]

        description = session.description
        if note is not None:
            try:
                description = validate_description(note)
            except ValidationError:
                return [format_invalid_description()]

        updated = session.with_updates(
            menu_state=MenuState.CONFIRM, amount=raw_amount, description=description
        )
        await self.sessions.set(session.user_id, updated)
        return [self._confirmation(updated)]

    async def _handle_confirm(self, session: Session, text: str, command: str) -> list[str]:
        if command in CONFIRM_WORDS:
            return await self._submit(session)

        edit_field = parse_edit_command(command)
        if edit_field is None:
            return [format_unknown_confirm_input()]

        session.begin_edit(edit_field)
        await self.sessions.set(session.user_id, session)
        replies = [format_edit_prompt(edit_field)]
        if edit_field == EditField.CATEGORY:
            tx_type = self._require(session, "transaction_type")
            replies.append(format_category_list(await self.categories.list_active(tx_type), tx_type))
        return replies

    async def _handle_edit(self, session: Session, text: str, command: str) -> list[str]:
        if command in CANCEL_WORDS:
            session.rollback_edit()
            await self.sessions.set(session.user_id, session)
            logger.info("Edit cancelled: user_id=%d", session.user_id)
            return [format_edit_cancelled(), self._confirmation(session)]

        edit_field = session.editing_field
        value = text.strip()
        if edit_field == EditField.AMOUNT:
            try:
                validate_amount(value)
            except ValidationError:
                return [format_invalid_amount()]
            session.amount = value
        elif edit_field == EditField.CATEGORY:
            tx_type = self._require(session, "transaction_type")
            category = await self.categories.resolve(value, tx_type)
            if category is None:
                options = await self.categories.list_active(tx_type)
                return [format_category_list(options, tx_type, not_found=True)]
            session.category = category.name
        else:
            try:
                session.description = validate_description(value)
            except ValidationError:
                return [format_invalid_description()]

        session.commit_edit()
        await self.sessions.set(session.user_id, session)
        logger.info("Field edited: user_id=%d field=%s", session.user_id, edit_field.value)
        return [self._confirmation(session)]

    # ------------------------------------------------------------------
    # Transitions shared by several states
    # ------------------------------------------------------------------

    async def _start(self, user_id: int) -> list[str]:
        await self.sessions.set(
            user_id, Session(user_id=user_id, menu_state=MenuState.TRANSACTION_TYPE)
        )
        return [format_transaction_type_menu()]

    async def _choose_type(self, session: Session, tx_type: TransactionType) -> list[str]:
        options = await self.categories.list_active(tx_type)
        if not options:
            logger.warning("No active categories for type=%s", tx_type.value)
        await self.sessions.set(
            session.user_id,
            Session(user_id=session.user_id, menu_state=MenuState.CATEGORY, transaction_type=tx_type),
        )
        return [format_category_list(options, tx_type)]

    async def _cancel(self, user_id: int) -> list[str]:
        await self.sessions.clear(user_id)
        await self.recovery.discard(user_id)
        logger.info("Workflow cancelled: user_id=%d", user_id)
        return [format_cancel_message()]

    async def _submit(self, session: Session) -> list[str]:
        candidate = self._build_candidate(session)
        if session.last_submit_failed:
            abandoned = await self.recovery.count_resubmission(session)
            if abandoned:
                return abandoned
        await self.recovery.snapshot(session)
        try:
            transaction, analysis = await self.processor.process(candidate)
        except TransientPersistenceError as e:
            logger.warning("Submission failed for user_id=%d, snapshot kept: %s",
                           session.user_id, e.message)
            session.last_submit_failed = True
            await self.sessions.set(session.user_id, session)
            return [format_submit_failed()]
        except ValidationError as e:
            logger.error("Submission rejected for user_id=%d, snapshot dropped: %s",
                         session.user_id, e.message)
            await self.recovery.discard(session.user_id)
            session.last_submit_failed = False
            session.retry_count = 0
            await self.sessions.set(session.user_id, session)
            return [format_submit_rejected()]

        await self.recovery.discard(session.user_id)
        await self.sessions.clear(session.user_id)
        totals = await self.processor.daily_totals(session.user_id)
        return [format_success(transaction, analysis, totals)]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self, session: Session, *fields: str):
        missing = [name for name in fields if getattr(session, name) is None]
        if missing:
            raise SessionIntegrityError(
                f"Session for user_id={session.user_id} in {session.menu_state.value} "
                f"is missing {', '.join(missing)}"
            )
        return getattr(session, fields[0])

    def _build_candidate(self, session: Session) -> TransactionCandidate:
        self._require(session, "transaction_type", "category", "amount")
        try:
            amount = validate_amount(session.amount)
        except ValidationError as e:
            raise SessionIntegrityError(f"Stored amount is invalid: {e.message}") from e
        return TransactionCandidate(
            user_id=session.user_id,
            type=session.transaction_type,
            category=session.category,
            amount=amount,
            description=session.description,
        )

    def _confirmation(self, session: Session) -> str:
        candidate = self._build_candidate(session)
        return format_confirmation(
            candidate.type, candidate.category, candidate.amount, candidate.description
        )
