"""Balance aggregation: fold settlement entries into per-member totals.

balance = paid - owed
- balance > 0: the member should receive money
- balance < 0: the member should pay
"""

import logging
from collections.abc import Iterable

from .models import Member, MemberBalance, SettlementEntry, SplitType
from .rounding import allocate_equal_shares

logger = logging.getLogger(__name__)


def calculate_balances(
    members: list[Member], entries: Iterable[SettlementEntry]
) -> list[MemberBalance]:
    """
    Compute paid, owed and net balance for every member.

    Equal entries are divided across all members with the payer absorbing the
    remainder (same primitive as calculate_equal_split), so sum(owed) equals
    sum(paid). Custom and proxy entries use their explicit splits.

    Args:
        members: Group members, defines output order
        entries: Entries to aggregate (actual_amount None counts as 0)

    Returns:
        One MemberBalance per member, in member order
    """
    if not members:
        return []

    member_ids = [m.id for m in members]
    balance_map = {
        m.id: MemberBalance(id=m.id, name=m.display_name) for m in members
    }

    for entry in entries:
        amount = entry.actual_amount or 0

        payer_balance = balance_map.get(entry.payer_id)
        if payer_balance is not None:
            payer_balance.paid += amount
        else:
            logger.warning(
                f"Payer {entry.payer_id} of entry {entry.id} is not a member; "
                f"paid amount {amount} ignored"
            )

        if entry.split_type != SplitType.EQUAL and entry.splits:
            split_total = 0
            for s in entry.splits:
                split_total += s.amount
                member_balance = balance_map.get(s.user_id)
                if member_balance is not None:
                    member_balance.owed += s.amount
            if split_total != amount:
                logger.warning(
                    f"Splits of entry {entry.id} sum to {split_total}, "
                    f"amount is {amount}"
                )
            continue

        if entry.split_type != SplitType.EQUAL:
            logger.debug(
                f"Entry {entry.id} is {entry.split_type.value} without splits, "
                f"falling back to equal split"
            )

        shares = allocate_equal_shares(amount, member_ids, entry.payer_id)
        for member_id, share in shares.items():
            balance_map[member_id].owed += share

    for member_balance in balance_map.values():
        member_balance.balance = member_balance.paid - member_balance.owed

    return [balance_map[m.id] for m in members]
