"""Rounding primitives shared by split calculation and balance aggregation.

Policy:
- Amounts are floored to whole yen.
- When an amount is divided evenly, the payer absorbs the remainder.
  Without a payer the remainder is left unsettled.
"""

import logging
import math
from numbers import Real

from .exceptions import InvalidArgumentError
from .models import EqualSplit

logger = logging.getLogger(__name__)


def _require_amount(amount: Real) -> None:
    if isinstance(amount, bool) or not isinstance(amount, Real):
        raise InvalidArgumentError(f"Amount must be a number, got {amount!r}")
    if not math.isfinite(amount):
        raise InvalidArgumentError(f"Amount must be finite, got {amount!r}")
    if amount < 0:
        raise InvalidArgumentError(f"Amount must be >= 0, got {amount!r}")


def floor_to_yen(amount: Real) -> int:
    """
    Floor a fractional amount to an integer currency unit.

    Args:
        amount: Amount, may be fractional

    Returns:
        Floored integer amount

    Raises:
        InvalidArgumentError: If amount is negative, NaN or infinite
    """
    _require_amount(amount)
    return math.floor(amount)


def split_equally(amount: Real, count: int) -> EqualSplit:
    """
    Divide an amount evenly and report the leftover.

    Args:
        amount: Total amount
        count: Number of people (positive integer)

    Returns:
        EqualSplit with per-person amount, remainder and distributable total

    Raises:
        InvalidArgumentError: On negative or non-finite amount, or a
            non-integer / non-positive count

    Example:
        split_equally(1000, 3) -> 333 each, remainder 1, total 999
    """
    _require_amount(amount)
    if isinstance(count, bool) or not isinstance(count, int):
        raise InvalidArgumentError(f"Member count must be an integer, got {count!r}")
    if count < 1:
        raise InvalidArgumentError(f"Member count must be >= 1, got {count}")

    if isinstance(amount, int):
        amount_per_person = amount // count
    else:
        amount_per_person = math.floor(amount / count)
    total = amount_per_person * count
    remainder = amount - total

    return EqualSplit(
        amount_per_person=amount_per_person, remainder=remainder, total=total
    )


def allocate_equal_shares(
    amount: int, member_ids: list[str], payer_id: str | None = None
) -> dict[str, int]:
    """
    Allocate an integer amount across members, payer absorbing the remainder.

    This is the one remainder policy used everywhere: split creation and
    balance replay both go through it, so sum(shares) == amount whenever the
    payer is one of the members.

    Args:
        amount: Total amount in yen
        member_ids: Members sharing the amount, in output order
        payer_id: Member who absorbs the rounding remainder

    Returns:
        Mapping of member id to share, in member order
    """
    if not member_ids:
        return {}

    if amount <= 0:
        return {member_id: 0 for member_id in member_ids}

    result = split_equally(amount, len(member_ids))
    shares = {member_id: result.amount_per_person for member_id in member_ids}

    if payer_id is not None and payer_id in shares:
        shares[payer_id] += result.remainder
    elif result.remainder:
        logger.debug(
            f"Remainder of {result.remainder} left unallocated "
            f"(payer {payer_id!r} not among sharing members)"
        )

    return shares
