"""Smart-merge reconciliation of draft settlement entries.

Refreshing a draft never destroys user input:
- filled / skipped entries are always kept as they are
- manual entries are never touched
- pending entries are synced with their latest source data
- pending entries whose source vanished are deleted
- obligations with no entry yet are inserted as pending
"""

import logging
from collections.abc import Iterable
from datetime import date

from .models import (
    EntryDiff,
    EntrySplit,
    EntryStatus,
    Obligation,
    Payment,
    RecurringRule,
    SettlementEntry,
    SourceType,
    SplitType,
)
from .schedule import compute_rule_dates_in_period
from .split import is_custom_split, is_proxy_split, rule_split_amount

logger = logging.getLogger(__name__)


def obligations_from_rules(
    rules: Iterable[RecurringRule], period_start: date, period_end: date
) -> list[Obligation]:
    """
    Expand active recurring rules into one obligation per firing date.

    Custom and proxy rules copy their split template; percentage rows are
    resolved against the rule's default amount.
    """
    obligations = []
    for rule in rules:
        if not rule.is_active:
            continue

        splits = []
        if rule.split_type != SplitType.EQUAL:
            splits = [
                EntrySplit(
                    user_id=s.user_id,
                    amount=rule_split_amount(rule.default_amount, s.amount, s.percentage),
                )
                for s in rule.splits
            ]

        for fire_date in compute_rule_dates_in_period(rule, period_start, period_end):
            obligations.append(
                Obligation(
                    source_type=SourceType.RECURRING_RULE,
                    source_id=rule.id,
                    payment_date=fire_date,
                    description=rule.description,
                    payer_id=rule.default_payer_id,
                    expected_amount=rule.default_amount,
                    split_type=rule.split_type,
                    splits=splits,
                )
            )
    return obligations


def classify_payment_splits(
    payment: Payment, member_ids: Iterable[str] | None = None
) -> SplitType:
    """
    Recover the split policy of a stored payment from its split rows.

    Splits that match an equal division across the whole group (payer
    absorbing the remainder) are equal; the entry is then re-split on the fly
    when its amount is corrected. Without member_ids the payer must be among
    the split members for the splits to count as equal.
    """
    if not payment.splits:
        return SplitType.EQUAL
    if payment.split_type == SplitType.PROXY:
        return SplitType.PROXY

    split_users = {s.user_id for s in payment.splits}
    if member_ids is not None:
        covers_group = split_users == set(member_ids)
    else:
        covers_group = payment.payer_id in split_users

    if (
        covers_group
        and not is_proxy_split(payment.splits, payment.payer_id)
        and not is_custom_split(payment.splits, payment.payer_id, payment.amount)
    ):
        return SplitType.EQUAL
    return SplitType.CUSTOM


def obligations_from_payments(
    payments: Iterable[Payment],
    period_end: date,
    member_ids: Iterable[str] | None = None,
) -> list[Obligation]:
    """
    Turn unsettled payments up to period_end into obligations.

    Payments older than the period start are included on purpose: a payment
    back-dated after the previous session closed must still be settled.
    Proxy and custom payments keep their splits; equal payments drop them.
    """
    if member_ids is not None:
        member_ids = list(member_ids)

    obligations = []
    for payment in payments:
        if payment.settlement_id is not None or payment.payment_date > period_end:
            continue

        split_type = classify_payment_splits(payment, member_ids)
        splits = []
        if split_type != SplitType.EQUAL:
            splits = [
                EntrySplit(user_id=s.user_id, amount=s.amount) for s in payment.splits
            ]

        obligations.append(
            Obligation(
                source_type=SourceType.PAYMENT,
                source_id=payment.id,
                payment_date=payment.payment_date,
                description=payment.description,
                payer_id=payment.payer_id,
                expected_amount=payment.amount,
                actual_amount=payment.amount,
                split_type=split_type,
                splits=splits,
            )
        )
    return obligations


def build_obligations(
    payments: Iterable[Payment],
    rules: Iterable[RecurringRule],
    period_start: date,
    period_end: date,
    member_ids: Iterable[str] | None = None,
) -> list[Obligation]:
    """All obligations a draft for [period_start, period_end] should contain."""
    return obligations_from_rules(
        rules, period_start, period_end
    ) + obligations_from_payments(payments, period_end, member_ids)


def _sync_entry(entry: SettlementEntry, obligation: Obligation) -> SettlementEntry:
    update = {
        "description": obligation.description,
        "payer_id": obligation.payer_id,
        "expected_amount": obligation.expected_amount,
        "split_type": obligation.split_type,
        "splits": [s.model_copy() for s in obligation.splits],
    }
    # Rule entries get their actual amount from the user; payments carry it.
    if obligation.source_type == SourceType.PAYMENT:
        update["actual_amount"] = obligation.actual_amount
        update["payment_date"] = obligation.payment_date
    return entry.model_copy(update=update)


def _new_entry(session_id: str, obligation: Obligation) -> SettlementEntry:
    return SettlementEntry(
        session_id=session_id,
        source_type=obligation.source_type,
        source_id=obligation.source_id,
        payment_date=obligation.payment_date,
        description=obligation.description,
        payer_id=obligation.payer_id,
        expected_amount=obligation.expected_amount,
        actual_amount=obligation.actual_amount,
        status=EntryStatus.PENDING,
        split_type=obligation.split_type,
        splits=[s.model_copy() for s in obligation.splits],
    )


def compute_entry_diff(
    session_id: str,
    existing: list[SettlementEntry],
    desired: list[Obligation],
) -> EntryDiff:
    """
    Compute the minimal change set between a draft's entries and its obligations.

    Entries and obligations are matched by source key (payment id, or rule id
    plus firing date). Updates are only emitted when a field actually changes,
    so running the diff against its own result is empty.

    Args:
        session_id: Draft session the entries belong to
        existing: Current entries of the session
        desired: Freshly computed obligations

    Returns:
        EntryDiff with entries to insert, entries to update and ids to delete
    """
    desired_by_key: dict[str, Obligation] = {}
    for obligation in desired:
        key = obligation.source_key
        if key in desired_by_key:
            logger.warning(f"Duplicate obligation {key} ignored")
            continue
        desired_by_key[key] = obligation

    # Locked entries claim their key first so a pending twin cannot shadow them.
    handled_keys = {
        entry.source_key
        for entry in existing
        if entry.is_locked and entry.source_key is not None
    }

    diff = EntryDiff()
    for entry in existing:
        key = entry.source_key
        if key is None or entry.is_locked:
            continue

        if key in handled_keys or key not in desired_by_key:
            if entry.id is None:
                logger.warning(f"Stale pending entry {key} has no id, cannot delete")
                continue
            diff.to_delete.append(entry.id)
            continue

        handled_keys.add(key)
        synced = _sync_entry(entry, desired_by_key[key])
        if synced != entry:
            diff.to_update.append(synced)

    for key, obligation in desired_by_key.items():
        if key not in handled_keys:
            diff.to_insert.append(_new_entry(session_id, obligation))

    logger.debug(
        f"Entry diff for session {session_id}: +{len(diff.to_insert)} "
        f"~{len(diff.to_update)} -{len(diff.to_delete)}"
    )
    return diff


def apply_diff_in_memory(
    existing: list[SettlementEntry], diff: EntryDiff
) -> list[SettlementEntry]:
    """
    Apply a diff to a list of entries without touching storage.

    Inserted entries keep id None. Useful for previews and for checking
    idempotence.
    """
    deleted = set(diff.to_delete)
    updated = {entry.id: entry for entry in diff.to_update}
    result = [
        updated.get(entry.id, entry)
        for entry in existing
        if entry.id is None or entry.id not in deleted
    ]
    return result + list(diff.to_insert)
