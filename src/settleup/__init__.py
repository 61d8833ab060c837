"""SettleUp - Shared household expense splitting and settlement."""

__version__ = "0.1.0"

from .balances import calculate_balances
from .config import Settings, load_settings
from .db import Database, SettlementRepository
from .models import (
    EntryDiff,
    Member,
    NetTransfer,
    Payment,
    RecurringRule,
    SettlementEntry,
    SettlementSession,
    Split,
)
from .period import suggest_period
from .reconciler import build_obligations, compute_entry_diff
from .rounding import floor_to_yen, split_equally
from .schedule import (
    compute_rule_dates_in_period,
    get_actual_day_of_month,
    should_rule_fire_in_month,
)
from .service import SettlementService, refresh_settlement_entries
from .split import calculate_custom_splits, calculate_equal_split, calculate_proxy_split
from .transfers import (
    balances_to_transfers,
    calculate_net_transfers,
    consolidate_transfers,
)

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "SettlementRepository",
    "EntryDiff",
    "Member",
    "NetTransfer",
    "Payment",
    "RecurringRule",
    "SettlementEntry",
    "SettlementSession",
    "Split",
    "calculate_balances",
    "suggest_period",
    "build_obligations",
    "compute_entry_diff",
    "floor_to_yen",
    "split_equally",
    "compute_rule_dates_in_period",
    "get_actual_day_of_month",
    "should_rule_fire_in_month",
    "SettlementService",
    "refresh_settlement_entries",
    "calculate_custom_splits",
    "calculate_equal_split",
    "calculate_proxy_split",
    "balances_to_transfers",
    "calculate_net_transfers",
    "consolidate_transfers",
]
