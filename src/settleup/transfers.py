"""Net-transfer solver: turn balances into a minimal list of payments.

Debtors and creditors are matched greedily in input order. Each step moves
min(debtor remaining, creditor remaining) and advances whichever side reached
zero, so at most len(debtors) + len(creditors) - 1 transfers are produced.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from .balances import calculate_balances
from .models import (
    ConsolidationResult,
    Member,
    MemberBalance,
    NetTransfer,
    SettlementEntry,
)

logger = logging.getLogger(__name__)

UNKNOWN_MEMBER_NAME = "Unknown"


@dataclass
class _Party:
    id: str
    name: str
    amount: int  # remaining, always positive


def _greedy_match(debtors: list[_Party], creditors: list[_Party]) -> list[NetTransfer]:
    result = []
    d_idx = 0
    c_idx = 0

    while d_idx < len(debtors) and c_idx < len(creditors):
        debtor = debtors[d_idx]
        creditor = creditors[c_idx]
        settle_amount = min(debtor.amount, creditor.amount)

        if settle_amount > 0:
            result.append(
                NetTransfer(
                    from_id=debtor.id,
                    from_name=debtor.name,
                    to_id=creditor.id,
                    to_name=creditor.name,
                    amount=settle_amount,
                )
            )

        debtor.amount -= settle_amount
        creditor.amount -= settle_amount

        if debtor.amount <= 0:
            d_idx += 1
        if creditor.amount <= 0:
            c_idx += 1

    return result


def _partition(
    balances: Iterable[tuple[str, str, int]],
) -> tuple[list[_Party], list[_Party]]:
    debtors = []
    creditors = []
    for member_id, name, balance in balances:
        if balance < 0:
            debtors.append(_Party(member_id, name, -balance))
        elif balance > 0:
            creditors.append(_Party(member_id, name, balance))
    return debtors, creditors


def balances_to_transfers(balances: list[MemberBalance]) -> list[NetTransfer]:
    """
    Convert member balances into transfer instructions.

    Args:
        balances: Member balances (paid - owed)

    Returns:
        Transfers from debtors to creditors, in input order
    """
    debtors, creditors = _partition((b.id, b.name, b.balance) for b in balances)
    return _greedy_match(debtors, creditors)


def calculate_net_transfers(
    members: list[Member], entries: Iterable[SettlementEntry]
) -> ConsolidationResult:
    """
    Aggregate entries into balances, then net them into transfers.

    Returns:
        ConsolidationResult with is_zero set when every balance is zero
    """
    balances = calculate_balances(members, entries)
    debtors, creditors = _partition((b.id, b.name, b.balance) for b in balances)

    if not debtors and not creditors:
        return ConsolidationResult(transfers=[], is_zero=True)

    transfers = _greedy_match(debtors, creditors)
    logger.info(
        f"Netted {len(debtors)} debtors and {len(creditors)} creditors "
        f"into {len(transfers)} transfers"
    )
    return ConsolidationResult(transfers=transfers, is_zero=False)


def calculate_my_transfer_balance(transfers: Iterable[NetTransfer], user_id: str) -> int:
    """Net position of one user over transfers: positive receives, negative pays."""
    balance = 0
    for t in transfers:
        if t.to_id == user_id:
            balance += t.amount
        if t.from_id == user_id:
            balance -= t.amount
    return balance


def consolidate_transfers(
    all_transfers: Iterable[Iterable[NetTransfer]],
    member_names: Mapping[str, str],
) -> ConsolidationResult:
    """
    Merge transfers from several sessions into one optimal set.

    Every transfer is replayed as a debit of its sender and a credit of its
    receiver, then the resulting balances are matched again. Back-and-forth
    payments across sessions cancel out.

    Args:
        all_transfers: One transfer list per session
        member_names: Display names by member id

    Returns:
        ConsolidationResult, is_zero when everything cancels out
    """
    balance_map: dict[str, int] = {}
    for transfers in all_transfers:
        for t in transfers:
            balance_map[t.from_id] = balance_map.get(t.from_id, 0) - t.amount
            balance_map[t.to_id] = balance_map.get(t.to_id, 0) + t.amount

    debtors, creditors = _partition(
        (member_id, member_names.get(member_id, UNKNOWN_MEMBER_NAME), balance)
        for member_id, balance in balance_map.items()
    )

    if not debtors and not creditors:
        return ConsolidationResult(transfers=[], is_zero=True)

    return ConsolidationResult(
        transfers=_greedy_match(debtors, creditors), is_zero=False
    )
