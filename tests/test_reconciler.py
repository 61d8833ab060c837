"""Tests for smart-merge reconciliation of draft entries."""

from datetime import date

from settleup.models import (
    EntrySplit,
    EntryStatus,
    Obligation,
    Payment,
    RecurringRule,
    RecurringRuleSplit,
    SettlementEntry,
    SourceType,
    Split,
    SplitType,
)
from settleup.reconciler import (
    apply_diff_in_memory,
    build_obligations,
    compute_entry_diff,
    obligations_from_payments,
    obligations_from_rules,
)

PERIOD_START = date(2026, 1, 1)
PERIOD_END = date(2026, 1, 31)


def payment_obligation(
    source_id: str = "p1", amount: int = 1000, payer_id: str = "alice"
) -> Obligation:
    return Obligation(
        source_type=SourceType.PAYMENT,
        source_id=source_id,
        payment_date=date(2026, 1, 10),
        description="Groceries",
        payer_id=payer_id,
        expected_amount=amount,
        actual_amount=amount,
    )


def rule_obligation(
    source_id: str = "rent", fire_date: date = date(2026, 1, 25), amount: int = 80000
) -> Obligation:
    return Obligation(
        source_type=SourceType.RECURRING_RULE,
        source_id=source_id,
        payment_date=fire_date,
        description="Rent",
        payer_id="alice",
        expected_amount=amount,
    )


def entry_from(
    obligation: Obligation,
    entry_id: str,
    status: EntryStatus = EntryStatus.PENDING,
    actual_amount: int | None = None,
) -> SettlementEntry:
    """Build a stored entry that mirrors an obligation."""
    return SettlementEntry(
        id=entry_id,
        session_id="s1",
        source_type=obligation.source_type,
        source_id=obligation.source_id,
        payment_date=obligation.payment_date,
        description=obligation.description,
        payer_id=obligation.payer_id,
        expected_amount=obligation.expected_amount,
        actual_amount=(
            actual_amount if actual_amount is not None else obligation.actual_amount
        ),
        status=status,
        split_type=obligation.split_type,
        splits=list(obligation.splits),
    )


def manual_entry(entry_id: str = "m1") -> SettlementEntry:
    return SettlementEntry(
        id=entry_id,
        session_id="s1",
        source_type=SourceType.MANUAL,
        payment_date=date(2026, 1, 5),
        description="Taxi",
        payer_id="bob",
        actual_amount=2400,
        status=EntryStatus.FILLED,
    )


class TestComputeEntryDiff:
    """Tests for compute_entry_diff."""

    def test_empty_session_inserts_everything(self):
        desired = [payment_obligation(), rule_obligation()]

        diff = compute_entry_diff("s1", [], desired)

        assert len(diff.to_insert) == 2
        assert diff.to_update == []
        assert diff.to_delete == []
        assert all(e.status == EntryStatus.PENDING for e in diff.to_insert)
        assert all(e.session_id == "s1" for e in diff.to_insert)
        assert all(e.id is None for e in diff.to_insert)

    def test_unchanged_entries_produce_empty_diff(self):
        obligation = payment_obligation()

        diff = compute_entry_diff("s1", [entry_from(obligation, "e1")], [obligation])

        assert diff.is_empty

    def test_filled_entry_preserved(self):
        obligation = rule_obligation(amount=80000)
        filled = entry_from(obligation, "e1", EntryStatus.FILLED, actual_amount=82000)
        changed = rule_obligation(amount=90000)

        diff = compute_entry_diff("s1", [filled], [changed])

        assert diff.is_empty

    def test_skipped_entry_preserved_when_source_vanishes(self):
        skipped = entry_from(rule_obligation(), "e1", EntryStatus.SKIPPED)

        diff = compute_entry_diff("s1", [skipped], [])

        assert diff.is_empty

    def test_manual_entry_never_touched(self):
        diff = compute_entry_diff("s1", [manual_entry()], [payment_obligation()])

        assert diff.to_delete == []
        assert diff.to_update == []
        assert len(diff.to_insert) == 1

    def test_pending_entry_synced(self):
        old = entry_from(payment_obligation(amount=1000), "e1")
        new = payment_obligation(amount=1500, payer_id="bob")

        diff = compute_entry_diff("s1", [old], [new])

        assert diff.to_insert == []
        assert diff.to_delete == []
        assert len(diff.to_update) == 1
        updated = diff.to_update[0]
        assert updated.id == "e1"
        assert updated.expected_amount == 1500
        assert updated.actual_amount == 1500
        assert updated.payer_id == "bob"
        assert updated.status == EntryStatus.PENDING

    def test_pending_rule_entry_keeps_actual_amount(self):
        old = entry_from(rule_obligation(amount=80000), "e1", actual_amount=81000)

        diff = compute_entry_diff("s1", [old], [rule_obligation(amount=85000)])

        assert diff.to_update[0].expected_amount == 85000
        assert diff.to_update[0].actual_amount == 81000

    def test_pending_entry_deleted_when_source_vanishes(self):
        stale = entry_from(payment_obligation("gone"), "e1")

        diff = compute_entry_diff("s1", [stale], [])

        assert diff.to_delete == ["e1"]

    def test_pending_twin_of_locked_entry_deleted(self):
        obligation = payment_obligation()
        filled = entry_from(obligation, "e1", EntryStatus.FILLED)
        twin = entry_from(obligation, "e2")

        diff = compute_entry_diff("s1", [twin, filled], [obligation])

        assert diff.to_delete == ["e2"]
        assert diff.to_insert == []

    def test_duplicate_pending_entries_collapse(self):
        obligation = payment_obligation()

        diff = compute_entry_diff(
            "s1", [entry_from(obligation, "e1"), entry_from(obligation, "e2")], [obligation]
        )

        assert diff.to_delete == ["e2"]

    def test_rule_dates_are_distinct_obligations(self):
        january = rule_obligation(fire_date=date(2026, 1, 25))
        february = rule_obligation(fire_date=date(2026, 2, 25))
        existing = [entry_from(january, "e1", EntryStatus.FILLED)]

        diff = compute_entry_diff("s1", existing, [january, february])

        assert [e.payment_date for e in diff.to_insert] == [date(2026, 2, 25)]

    def test_second_run_is_empty(self):
        existing = [
            entry_from(payment_obligation("p1"), "e1", EntryStatus.FILLED),
            entry_from(payment_obligation("p2", amount=300), "e2"),
            entry_from(payment_obligation("old"), "e3"),
            manual_entry(),
        ]
        desired = [
            payment_obligation("p1"),
            payment_obligation("p2", amount=700),
            payment_obligation("p3"),
            rule_obligation(),
        ]

        first = compute_entry_diff("s1", existing, desired)
        after = apply_diff_in_memory(existing, first)
        second = compute_entry_diff("s1", after, desired)

        assert not first.is_empty
        assert second.is_empty

    def test_entry_count_after_merge(self):
        existing = [
            entry_from(payment_obligation("p1"), "e1", EntryStatus.FILLED),
            entry_from(payment_obligation("old"), "e2"),
            manual_entry(),
        ]
        desired = [payment_obligation("p1"), payment_obligation("p2")]

        after = apply_diff_in_memory(existing, compute_entry_diff("s1", existing, desired))

        keys = sorted(e.source_key or "manual" for e in after)
        assert keys == ["manual", "payment:p1", "payment:p2"]


class TestObligationsFromPayments:
    """Tests for obligations_from_payments."""

    def make_payment(self, payment_id: str, payment_date: date, **kwargs) -> Payment:
        return Payment(
            id=payment_id,
            group_id="g1",
            payer_id="alice",
            amount=kwargs.pop("amount", 1000),
            payment_date=payment_date,
            **kwargs,
        )

    def test_settled_and_future_payments_excluded(self):
        payments = [
            self.make_payment("p1", date(2026, 1, 10)),
            self.make_payment("p2", date(2026, 1, 11), settlement_id="old"),
            self.make_payment("p3", date(2026, 2, 1)),
        ]

        obligations = obligations_from_payments(payments, PERIOD_END)

        assert [o.source_id for o in obligations] == ["p1"]

    def test_back_dated_payment_included(self):
        payments = [self.make_payment("p1", date(2025, 12, 20))]

        obligations = obligations_from_payments(payments, PERIOD_END)

        assert [o.source_id for o in obligations] == ["p1"]

    def test_split_type_inferred(self):
        proxy = self.make_payment(
            "p1",
            date(2026, 1, 10),
            split_type=SplitType.PROXY,
            splits=[
                Split(payment_id="p1", user_id="alice", amount=0),
                Split(payment_id="p1", user_id="bob", amount=1000),
            ],
        )
        custom = self.make_payment(
            "p2",
            date(2026, 1, 10),
            splits=[Split(payment_id="p2", user_id="bob", amount=1000)],
        )
        equal = self.make_payment("p3", date(2026, 1, 10))

        obligations = obligations_from_payments([proxy, custom, equal], PERIOD_END)

        assert [o.split_type for o in obligations] == [
            SplitType.PROXY,
            SplitType.CUSTOM,
            SplitType.EQUAL,
        ]
        assert obligations[0].splits[1] == EntrySplit(user_id="bob", amount=1000)

    def test_equal_splits_over_group_stay_equal(self):
        payment = self.make_payment(
            "p1",
            date(2026, 1, 10),
            amount=1001,
            splits=[
                Split(payment_id="p1", user_id="alice", amount=501),
                Split(payment_id="p1", user_id="bob", amount=500),
            ],
        )

        (obligation,) = obligations_from_payments(
            [payment], PERIOD_END, member_ids=["alice", "bob"]
        )

        assert obligation.split_type == SplitType.EQUAL
        assert obligation.splits == []

    def test_equal_splits_over_subset_are_custom(self):
        payment = self.make_payment(
            "p1",
            date(2026, 1, 10),
            splits=[
                Split(payment_id="p1", user_id="alice", amount=500),
                Split(payment_id="p1", user_id="bob", amount=500),
            ],
        )

        (obligation,) = obligations_from_payments(
            [payment], PERIOD_END, member_ids=["alice", "bob", "carol"]
        )

        assert obligation.split_type == SplitType.CUSTOM
        assert len(obligation.splits) == 2

    def test_amount_is_actual_amount(self):
        obligations = obligations_from_payments(
            [self.make_payment("p1", date(2026, 1, 10), amount=4321)], PERIOD_END
        )

        assert obligations[0].expected_amount == 4321
        assert obligations[0].actual_amount == 4321


class TestObligationsFromRules:
    """Tests for obligations_from_rules."""

    def make_rule(self, **kwargs) -> RecurringRule:
        defaults = dict(
            id="rent",
            group_id="g1",
            description="Rent",
            day_of_month=25,
            default_payer_id="alice",
            default_amount=80000,
            start_date=date(2025, 1, 1),
        )
        defaults.update(kwargs)
        return RecurringRule(**defaults)

    def test_one_obligation_per_firing_date(self):
        obligations = obligations_from_rules(
            [self.make_rule()], date(2026, 1, 1), date(2026, 3, 31)
        )

        assert [o.payment_date for o in obligations] == [
            date(2026, 1, 25),
            date(2026, 2, 25),
            date(2026, 3, 25),
        ]
        assert all(o.actual_amount is None for o in obligations)
        assert len({o.source_key for o in obligations}) == 3

    def test_inactive_rule_skipped(self):
        assert obligations_from_rules(
            [self.make_rule(is_active=False)], PERIOD_START, PERIOD_END
        ) == []

    def test_custom_rule_copies_split_template(self):
        rule = self.make_rule(
            split_type=SplitType.CUSTOM,
            splits=[
                RecurringRuleSplit(user_id="alice", percentage=60),
                RecurringRuleSplit(user_id="bob", amount=32000),
            ],
        )

        obligations = obligations_from_rules([rule], PERIOD_START, PERIOD_END)

        assert obligations[0].splits == [
            EntrySplit(user_id="alice", amount=48000),
            EntrySplit(user_id="bob", amount=32000),
        ]


class TestBuildObligations:
    """Tests for build_obligations."""

    def test_combines_rules_and_payments(self):
        rule = RecurringRule(
            id="rent",
            group_id="g1",
            description="Rent",
            day_of_month=25,
            default_payer_id="alice",
            start_date=date(2026, 1, 1),
        )
        payment = Payment(
            id="p1",
            group_id="g1",
            payer_id="bob",
            amount=500,
            payment_date=date(2026, 1, 3),
        )

        obligations = build_obligations([payment], [rule], PERIOD_START, PERIOD_END)

        assert sorted(o.source_key for o in obligations) == [
            "payment:p1",
            "recurring_rule:rent|2026-01-25",
        ]
