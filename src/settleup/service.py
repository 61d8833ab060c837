"""Service layer for settlement sessions.

Composes the pure calculators with the storage boundary. The pure parts
(obligation building, entry diff, netting) never touch storage; each stateful
operation reads, computes, then writes once.
"""

import logging
from datetime import date, datetime

from .db import Database, SettlementRepository, new_id
from .exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidArgumentError,
    InvariantViolationError,
    NothingToConfirmError,
    PersistenceError,
    SessionNotFoundError,
    SettleUpError,
)
from .models import (
    ConsolidationResult,
    EntrySplit,
    EntryStatus,
    Payment,
    PeriodSuggestion,
    SessionStatus,
    SettlementEntry,
    SettlementSession,
    SourceType,
    Split,
    SplitType,
)
from .period import suggest_period
from .reconciler import build_obligations, compute_entry_diff
from .split import (
    calculate_equal_split,
    get_proxy_beneficiary_id,
    validate_custom_split_total,
)
from .transfers import calculate_net_transfers, consolidate_transfers

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.DRAFT: {SessionStatus.CONFIRMED},
    SessionStatus.CONFIRMED: {SessionStatus.PENDING_PAYMENT, SessionStatus.SETTLED},
    SessionStatus.PENDING_PAYMENT: {SessionStatus.SETTLED},
    SessionStatus.SETTLED: set(),
}


def transition(session: SettlementSession, target: SessionStatus) -> SettlementSession:
    """
    Move a session to a new status.

    Raises:
        ConflictError: If the transition is not allowed
    """
    if target not in ALLOWED_TRANSITIONS[session.status]:
        raise ConflictError(
            session.id,
            session.status.value,
            " or ".join(
                sorted(
                    s.value for s, targets in ALLOWED_TRANSITIONS.items() if target in targets
                )
            ),
        )
    return session.model_copy(update={"status": target})


def refresh_entries(
    repo: SettlementRepository,
    session_id: str,
    group_id: str,
    period_start: date,
    period_end: date,
    requesting_user_id: str,
) -> int:
    """
    Smart-merge a draft session's entries with the current source data.

    Args:
        repo: Storage boundary
        session_id: Draft session to refresh
        group_id: Group owning the session
        period_start: First day of the period
        period_end: Last day of the period
        requesting_user_id: User asking for the refresh

    Returns:
        Number of newly added entries

    Raises:
        AuthorizationError: If the user is not a group member
        SessionNotFoundError: If the session does not exist in the group
        ConflictError: If the session is not a draft
        PersistenceError: If the diff cannot be applied
    """
    if not repo.is_group_member(group_id, requesting_user_id):
        raise AuthorizationError(group_id, requesting_user_id)

    session = repo.read_session(session_id)
    if session is None or session.group_id != group_id:
        raise SessionNotFoundError(f"Settlement session {session_id} not found")
    if session.status != SessionStatus.DRAFT:
        raise ConflictError(session_id, session.status.value, SessionStatus.DRAFT.value)

    existing = repo.read_entries(session_id)
    payments = repo.list_unsettled_payments(group_id, None, period_end)
    rules = repo.list_recurring_rules(group_id)
    member_ids = [m.id for m in repo.list_members(group_id)]

    desired = build_obligations(
        payments, rules, period_start, period_end, member_ids=member_ids
    )
    diff = compute_entry_diff(session_id, existing, desired)

    if diff.is_empty:
        logger.info(f"Session {session_id} already up to date")
        return 0

    return repo.apply_entry_diff(session_id, diff)


def refresh_settlement_entries(
    repo: SettlementRepository,
    session_id: str,
    group_id: str,
    period_start: date,
    period_end: date,
    requesting_user_id: str,
) -> int:
    """
    Sentinel-returning variant of refresh_entries for RPC-style callers.

    Returns:
        Added count (>= 0), or a negative code:
        -1 session not found, -2 not a group member, -3 not a draft,
        -5 storage failure
    """
    try:
        return refresh_entries(
            repo, session_id, group_id, period_start, period_end, requesting_user_id
        )
    except SettleUpError as e:
        logger.warning(f"Refresh of session {session_id} failed ({e.kind.value}): {e}")
        return e.sentinel
    except Exception:
        logger.exception(f"Refresh of session {session_id} failed unexpectedly")
        return PersistenceError.sentinel


def _rederive_proxy_splits(
    original: SettlementEntry, updated: SettlementEntry
) -> list[EntrySplit]:
    """Move the whole (possibly corrected) amount onto the proxy beneficiary."""
    beneficiary_id = get_proxy_beneficiary_id(original.splits, original.payer_id)
    if beneficiary_id is None:
        raise InvariantViolationError(
            f"Entry {original.id} has no proxy beneficiary, pass splits explicitly"
        )
    if beneficiary_id == updated.payer_id:
        raise InvariantViolationError("Beneficiary must be different from payer")
    return [
        EntrySplit(
            user_id=s.user_id,
            amount=(updated.actual_amount or 0) if s.user_id == beneficiary_id else 0,
        )
        for s in original.splits
    ]


def is_settleable(entry: SettlementEntry) -> bool:
    """Filled entries settle; pending payment entries settle with their known amount."""
    if entry.status == EntryStatus.FILLED:
        return entry.actual_amount is not None
    return (
        entry.status == EntryStatus.PENDING
        and entry.source_type == SourceType.PAYMENT
        and entry.actual_amount is not None
    )


class SettlementService:
    """Service for the settlement session lifecycle of a group."""

    def __init__(self, database: Database):
        """Initialize the settlement service."""
        self.db = database

    # ========================================================================
    # Guards
    # ========================================================================

    def _require_member(self, group_id: str, user_id: str):
        if not self.db.is_group_member(group_id, user_id):
            raise AuthorizationError(group_id, user_id)

    def _load_session(self, session_id: str, user_id: str) -> SettlementSession:
        session = self.db.read_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Settlement session {session_id} not found")
        self._require_member(session.group_id, user_id)
        return session

    def _load_draft(self, session_id: str, user_id: str) -> SettlementSession:
        session = self._load_session(session_id, user_id)
        if session.status != SessionStatus.DRAFT:
            raise ConflictError(
                session_id, session.status.value, SessionStatus.DRAFT.value
            )
        return session

    def _load_draft_entry(
        self, entry_id: str, user_id: str
    ) -> tuple[SettlementSession, SettlementEntry]:
        entry = self.db.read_entry(entry_id)
        if entry is None:
            raise SessionNotFoundError(f"Settlement entry {entry_id} not found")
        return self._load_draft(entry.session_id, user_id), entry

    # ========================================================================
    # Reads
    # ========================================================================

    def get_session(self, session_id: str, user_id: str) -> SettlementSession:
        """Get a session the user's group owns."""
        return self._load_session(session_id, user_id)

    def list_entries(self, session_id: str, user_id: str) -> list[SettlementEntry]:
        """Get the entries of a session the user's group owns."""
        self._load_session(session_id, user_id)
        return self.db.read_entries(session_id)

    # ========================================================================
    # Draft operations
    # ========================================================================

    def suggest_period(
        self, group_id: str, user_id: str, today: date | None = None
    ) -> PeriodSuggestion:
        """Suggest the period of the next draft from stored payments and sessions."""
        self._require_member(group_id, user_id)

        oldest, newest, count = self.db.get_unsettled_payment_stats(group_id)
        last_end = self.db.get_last_confirmed_end(group_id)
        has_on_last_end = (
            self.db.has_unsettled_on(group_id, last_end) if last_end else False
        )

        return suggest_period(
            oldest_unsettled_date=oldest,
            newest_unsettled_date=newest,
            unsettled_count=count,
            last_confirmed_end=last_end,
            has_unsettled_on_last_confirmed=has_on_last_end,
            today=today or date.today(),
        )

    def create_draft(
        self, group_id: str, period_start: date, period_end: date, user_id: str
    ) -> tuple[SettlementSession, int]:
        """
        Open a draft session and fill it with entries.

        Returns:
            Tuple of (session, number of entries added)
        """
        self._require_member(group_id, user_id)
        if period_start > period_end:
            raise InvalidArgumentError(
                f"Period start {period_start} is after period end {period_end}"
            )

        drafts = self.db.list_sessions(group_id, status=SessionStatus.DRAFT)
        if drafts:
            raise ConflictError(
                drafts[0].id,
                SessionStatus.DRAFT.value,
                "none",
                message=f"Group {group_id} already has draft session {drafts[0].id}",
            )

        session = SettlementSession(
            id=new_id(),
            group_id=group_id,
            period_start=period_start,
            period_end=period_end,
            created_by=user_id,
        )
        self.db.save_session(session)
        logger.info(
            f"Created draft session {session.id} for {period_start}..{period_end}"
        )

        added = self.refresh(session.id, user_id)
        return session, added

    def refresh(self, session_id: str, user_id: str) -> int:
        """Smart-merge a draft with current payments and recurring rules."""
        session = self.db.read_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Settlement session {session_id} not found")

        added = refresh_entries(
            self.db,
            session_id,
            session.group_id,
            session.period_start,
            session.period_end,
            user_id,
        )
        logger.info(f"Refreshed session {session_id}: {added} entries added")
        return added

    def update_entry(
        self,
        entry_id: str,
        user_id: str,
        status: EntryStatus = EntryStatus.FILLED,
        actual_amount: int | None = None,
        payer_id: str | None = None,
        payment_date: date | None = None,
        splits: list[EntrySplit] | None = None,
    ) -> SettlementEntry:
        """
        Fill or skip an entry of a draft session.

        Filling requires an amount (>= 0). Skipping clears the amount. A proxy
        entry filled without explicit splits charges the corrected amount to
        its beneficiary; custom and proxy splits must add up to the amount.
        """
        session, entry = self._load_draft_entry(entry_id, user_id)

        if status == EntryStatus.FILLED and actual_amount is None:
            raise InvalidArgumentError("A filled entry needs an actual amount")
        if actual_amount is not None and actual_amount < 0:
            raise InvalidArgumentError(f"Amount must be >= 0, got {actual_amount}")
        if payer_id is not None and not self.db.is_group_member(
            session.group_id, payer_id
        ):
            raise InvariantViolationError(f"Payer {payer_id} is not a group member")

        update = {
            "status": status,
            "actual_amount": None if status == EntryStatus.SKIPPED else actual_amount,
            "filled_by": user_id if status != EntryStatus.PENDING else None,
        }
        if payer_id is not None:
            update["payer_id"] = payer_id
        if payment_date is not None:
            update["payment_date"] = payment_date
        if splits is not None:
            update["splits"] = splits

        updated = entry.model_copy(update=update)
        if updated.status == EntryStatus.FILLED and updated.splits:
            if splits is None and updated.split_type == SplitType.PROXY:
                updated = updated.model_copy(
                    update={"splits": _rederive_proxy_splits(entry, updated)}
                )
            if updated.split_type != SplitType.EQUAL:
                validate_custom_split_total(updated.splits, updated.actual_amount or 0)

        self.db.save_entry(updated)
        logger.info(f"Entry {entry_id} marked {status.value}")
        return updated

    def add_manual_entry(
        self,
        session_id: str,
        user_id: str,
        description: str,
        payer_id: str,
        amount: int,
        payment_date: date,
        split_type: SplitType = SplitType.EQUAL,
        splits: list[EntrySplit] | None = None,
    ) -> SettlementEntry:
        """Add a hand-entered, already filled entry to a draft."""
        session = self._load_draft(session_id, user_id)
        if amount < 0:
            raise InvalidArgumentError(f"Amount must be >= 0, got {amount}")
        if not self.db.is_group_member(session.group_id, payer_id):
            raise InvariantViolationError(f"Payer {payer_id} is not a group member")
        if split_type == SplitType.CUSTOM:
            validate_custom_split_total(splits or [], amount)

        entry = SettlementEntry(
            session_id=session_id,
            source_type=SourceType.MANUAL,
            payment_date=payment_date,
            description=description,
            payer_id=payer_id,
            expected_amount=amount,
            actual_amount=amount,
            status=EntryStatus.FILLED,
            split_type=split_type,
            splits=splits or [],
            filled_by=user_id,
        )
        entry_id = self.db.save_entry(entry)
        return entry.model_copy(update={"id": entry_id})

    def delete_manual_entry(self, entry_id: str, user_id: str):
        """Delete a hand-entered entry; sourced entries are managed by refresh."""
        _, entry = self._load_draft_entry(entry_id, user_id)
        if entry.source_type != SourceType.MANUAL:
            raise InvariantViolationError("Only manual entries can be deleted")
        self.db.delete_entry(entry_id)

    # ========================================================================
    # Confirmation and payment
    # ========================================================================

    def _payment_from_entry(
        self, session: SettlementSession, entry: SettlementEntry, member_ids: list[str]
    ) -> Payment:
        payment_id = new_id()
        amount = entry.actual_amount or 0
        if entry.split_type != SplitType.EQUAL and entry.splits:
            splits = [
                Split(payment_id=payment_id, user_id=s.user_id, amount=s.amount)
                for s in entry.splits
            ]
        else:
            splits = calculate_equal_split(payment_id, amount, member_ids, entry.payer_id)

        return Payment(
            id=payment_id,
            group_id=session.group_id,
            payer_id=entry.payer_id,
            amount=amount,
            payment_date=entry.payment_date,
            description=entry.description,
            split_type=entry.split_type,
            splits=splits,
            settlement_id=session.id,
        )

    def confirm(self, session_id: str, user_id: str) -> SettlementSession:
        """
        Confirm a draft: net its entries into transfers and close the period.

        The session goes to pending_payment when money has to move, or straight
        to settled when everything nets to zero.

        Raises:
            NothingToConfirmError: If no entry can be settled
        """
        session = self._load_draft(session_id, user_id)

        entries = [e for e in self.db.read_entries(session_id) if is_settleable(e)]
        if not entries:
            raise NothingToConfirmError(f"Session {session_id} has no filled entries")

        members = self.db.list_members(session.group_id)
        member_ids = [m.id for m in members]
        result = calculate_net_transfers(members, entries)

        now = datetime.now()
        confirmed = transition(session, SessionStatus.CONFIRMED)
        if result.is_zero or not result.transfers:
            final = transition(confirmed, SessionStatus.SETTLED)
            final = final.model_copy(update={"settled_at": now})
        else:
            final = transition(confirmed, SessionStatus.PENDING_PAYMENT)
        final = final.model_copy(
            update={"net_transfers": result.transfers, "confirmed_at": now}
        )

        settled_payment_ids = [
            e.source_id
            for e in entries
            if e.source_type == SourceType.PAYMENT and e.source_id is not None
        ]
        new_payments = [
            self._payment_from_entry(session, e, member_ids)
            for e in entries
            if e.source_type != SourceType.PAYMENT
        ]

        self.db.persist_confirmed_transfers(final, settled_payment_ids, new_payments)
        logger.info(
            f"Confirmed session {session_id}: {len(entries)} entries, "
            f"{len(result.transfers)} transfers, status {final.status.value}"
        )
        return final

    def report_payment(self, session_id: str, user_id: str) -> SettlementSession:
        """Record that the transfers of a confirmed session were sent."""
        session = self._load_session(session_id, user_id)
        if session.status != SessionStatus.PENDING_PAYMENT:
            raise ConflictError(
                session_id, session.status.value, SessionStatus.PENDING_PAYMENT.value
            )
        reported = session.model_copy(update={"payment_reported_at": datetime.now()})
        self.db.save_session(reported)
        return reported

    def confirm_receipt(self, session_id: str, user_id: str) -> SettlementSession:
        """Confirm the transfers arrived, completing the session."""
        session = self._load_session(session_id, user_id)
        settled = transition(session, SessionStatus.SETTLED)
        settled = settled.model_copy(update={"settled_at": datetime.now()})
        self.db.save_session(settled)
        logger.info(f"Session {session_id} settled")
        return settled

    def consolidated_transfers(self, group_id: str, user_id: str) -> ConsolidationResult:
        """Net the outstanding transfers of every session awaiting payment."""
        self._require_member(group_id, user_id)
        sessions = self.db.list_sessions(group_id, status=SessionStatus.PENDING_PAYMENT)
        member_names = {m.id: m.display_name for m in self.db.list_members(group_id)}
        return consolidate_transfers(
            [s.net_transfers for s in sessions], member_names
        )
