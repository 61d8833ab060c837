"""Split calculators: divide one payment among group members.

- equal: everyone pays the same, the payer absorbs the rounding remainder
- custom: each member's amount is given explicitly
- proxy: the payer bought on behalf of one beneficiary who owes everything
"""

import logging
import math
from collections.abc import Iterable, Mapping

from .exceptions import InvariantViolationError
from .models import EntrySplit, Split
from .rounding import allocate_equal_shares

logger = logging.getLogger(__name__)


def calculate_equal_split(
    payment_id: str,
    total_amount: int,
    member_ids: list[str],
    payer_id: str | None = None,
) -> list[Split]:
    """
    Split a payment evenly across members.

    Args:
        payment_id: Payment the shares belong to
        total_amount: Payment amount in yen
        member_ids: Members sharing the payment
        payer_id: Remainder absorber; without it the remainder is dropped

    Returns:
        One Split per member, in member order
    """
    shares = allocate_equal_shares(total_amount, member_ids, payer_id)
    return [
        Split(payment_id=payment_id, user_id=user_id, amount=amount)
        for user_id, amount in shares.items()
    ]


def _parse_custom_amount(raw: str) -> int:
    try:
        parsed = float(raw.strip())
    except ValueError:
        return 0
    if not math.isfinite(parsed) or parsed < 0:
        return 0
    return math.floor(parsed)


def calculate_custom_splits(
    payment_id: str, custom_amounts: Mapping[str, str]
) -> list[Split]:
    """
    Build splits from user-entered amounts.

    Empty strings exclude the member. Non-numeric or negative input becomes 0,
    fractional input is floored. The total is not checked here, see
    validate_custom_split_total.
    """
    results = []
    for user_id, raw in custom_amounts.items():
        if raw == "":
            continue
        results.append(
            Split(
                payment_id=payment_id,
                user_id=user_id,
                amount=_parse_custom_amount(raw),
            )
        )
    return results


def calculate_proxy_split(
    payment_id: str,
    total_amount: int,
    payer_id: str,
    beneficiary_id: str,
    all_member_ids: list[str],
) -> list[Split]:
    """
    Attribute the whole payment to one beneficiary.

    Raises:
        InvariantViolationError: If the beneficiary is the payer or is not
            a group member
    """
    if beneficiary_id == payer_id:
        raise InvariantViolationError("Beneficiary must be different from payer")
    if beneficiary_id not in all_member_ids:
        raise InvariantViolationError("Beneficiary must be a group member")

    return [
        Split(
            payment_id=payment_id,
            user_id=user_id,
            amount=total_amount if user_id == beneficiary_id else 0,
        )
        for user_id in all_member_ids
    ]


def validate_custom_split_total(
    splits: Iterable[Split | EntrySplit], total_amount: int
) -> None:
    """
    Check that custom shares add up to the payment amount.

    Raises:
        InvariantViolationError: If the sum differs from total_amount
    """
    split_total = sum(s.amount for s in splits)
    if split_total != total_amount:
        raise InvariantViolationError(
            f"Custom splits sum to {split_total}, expected {total_amount}"
        )


def is_proxy_split(splits: list[Split | EntrySplit], payer_id: str) -> bool:
    """A split set is proxy when the payer's own share is zero."""
    return bool(splits) and any(
        s.user_id == payer_id and s.amount == 0 for s in splits
    )


def get_proxy_beneficiary_id(
    splits: list[Split | EntrySplit], payer_id: str
) -> str | None:
    """Return the first non-payer member with a positive share of a proxy split."""
    if not is_proxy_split(splits, payer_id):
        return None
    for s in splits:
        if s.user_id != payer_id and s.amount > 0:
            return s.user_id
    return None


def is_custom_split(
    splits: list[Split | EntrySplit], payer_id: str, total_amount: int
) -> bool:
    """
    Tell whether persisted splits differ from what an equal split would produce.

    Proxy splits are not custom.
    """
    if not splits:
        return False
    if is_proxy_split(splits, payer_id):
        return False

    expected = allocate_equal_shares(
        total_amount, [s.user_id for s in splits], payer_id
    )
    return any(s.amount != expected[s.user_id] for s in splits)


def rule_split_amount(
    default_amount: int | None, amount: int | None, percentage: float | None
) -> int:
    """Materialize a recurring-rule split row: fixed amount, else floored percentage."""
    if amount is not None:
        return amount
    return math.floor((default_amount or 0) * (percentage or 0) / 100)
