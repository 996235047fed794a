"""
Tests for the budget ledger service.
Covers postings, refusals, transfers, allocations, threshold alerts,
utilization and reconciliation against the transaction log.
"""

import asyncio

import pytest

from api.services import budgets
from api.services.notifications import BUDGET_ALERT_TASK
from conftest import OTHER_TENANT, TENANT, make_job, money, period
from core.exceptions import (
    AllocationExceeded,
    BudgetExceeded,
    BudgetLocked,
    InvalidTransaction,
    NotFound,
)
from database.models.budgets import (
    AlertSeverity,
    AllocationTarget,
    BudgetStatus,
    TransactionType,
)


async def _budget(total="10000.00", **kwargs) -> dict:
    start, end = kwargs.pop("period", period())
    return await budgets.create_budget(
        TENANT, kwargs.pop("name", "Engineering 2026"), money(total), start, end, **kwargs
    )


async def _deduct(budget_id: int, amount, **kwargs) -> dict:
    return await budgets.post_budget_transaction(
        TENANT, budget_id, TransactionType.DEDUCTION, money(amount), **kwargs
    )


class TestCreateBudget:
    @pytest.mark.asyncio
    async def test_opening_balance_is_first_ledger_entry(self):
        budget = await _budget()

        assert budget["total_amount"] == "10000.00"
        assert budget["remaining_amount"] == "10000.00"
        assert budget["status"] == "ACTIVE"
        assert budget["version"] == 1
        assert budget["path"] == f"/{budget['id']}/"

        ledger = await budgets.list_transactions(TENANT, budget["id"])
        assert len(ledger) == 1
        assert ledger[0]["sequence"] == 1
        assert ledger[0]["transaction_type"] == "ADJUSTMENT"
        assert ledger[0]["balance_after"] == "10000.00"

    @pytest.mark.asyncio
    async def test_child_inherits_currency_and_path(self):
        parent = await _budget(currency="usd")
        child = await _budget("2000.00", name="Platform team", parent_id=parent["id"])

        assert child["currency"] == "USD"
        assert child["depth"] == 1
        assert child["level"] == "DEPARTMENT"
        assert child["path"] == f"/{parent['id']}/{child['id']}/"

        tree = await budgets.get_budget_tree(TENANT, parent["id"])
        assert [node["id"] for node in tree["children"]] == [child["id"]]

    @pytest.mark.asyncio
    async def test_rejects_reversed_period(self):
        start, end = period()
        with pytest.raises(InvalidTransaction):
            await budgets.create_budget(TENANT, "Backwards", money(100), end, start)

    @pytest.mark.asyncio
    async def test_rejects_sub_cent_amounts(self):
        with pytest.raises(InvalidTransaction):
            await _budget("100.005")

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_see_budget(self):
        budget = await _budget()
        with pytest.raises(NotFound):
            await budgets.get_budget(OTHER_TENANT, budget["id"])


class TestPostings:
    @pytest.mark.asyncio
    async def test_deduction_updates_balance_and_sequence(self):
        budget = await _budget()
        entry = await _deduct(budget["id"], "2500.00", source_reference="invoice-17")

        assert entry["sequence"] == 2
        assert entry["balance_after"] == "7500.00"
        assert entry["spent_after"] == "2500.00"

        current = await budgets.get_budget(TENANT, budget["id"])
        assert current["spent_amount"] == "2500.00"
        assert current["remaining_amount"] == "7500.00"
        assert current["version"] == 2

    @pytest.mark.asyncio
    async def test_deduction_over_remaining_is_refused(self):
        budget = await _budget("1000.00")
        with pytest.raises(BudgetExceeded) as exc_info:
            await _deduct(budget["id"], "1000.01")

        assert exc_info.value.details["remaining"] == money("1000.00")
        current = await budgets.get_budget(TENANT, budget["id"])
        assert current["spent_amount"] == "0.00"
        assert current["version"] == 1

    @pytest.mark.asyncio
    async def test_depleted_and_back(self):
        budget = await _budget("500.00")
        await _deduct(budget["id"], "500.00")
        assert (await budgets.get_budget(TENANT, budget["id"]))["status"] == "DEPLETED"

        with pytest.raises(BudgetExceeded):
            await _deduct(budget["id"], "0.01")

        await budgets.post_budget_transaction(
            TENANT, budget["id"], TransactionType.REFUND, money("200.00")
        )
        current = await budgets.get_budget(TENANT, budget["id"])
        assert current["status"] == "ACTIVE"
        assert current["remaining_amount"] == "200.00"

    @pytest.mark.asyncio
    async def test_refund_cannot_exceed_spent(self):
        budget = await _budget()
        await _deduct(budget["id"], "100.00")
        with pytest.raises(InvalidTransaction):
            await budgets.post_budget_transaction(
                TENANT, budget["id"], TransactionType.REFUND, money("150.00")
            )

    @pytest.mark.asyncio
    async def test_negative_adjustment_cannot_overdraw(self):
        budget = await _budget("1000.00")
        await _deduct(budget["id"], "800.00")

        with pytest.raises(BudgetExceeded):
            await budgets.post_budget_transaction(
                TENANT, budget["id"], TransactionType.ADJUSTMENT, money("-300.00")
            )

        entry = await budgets.post_budget_transaction(
            TENANT, budget["id"], TransactionType.ADJUSTMENT, money("-200.00")
        )
        assert entry["balance_after"] == "0.00"
        assert entry["total_after"] == "800.00"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-5.00"])
    async def test_non_positive_deduction_rejected(self, amount):
        budget = await _budget()
        with pytest.raises(InvalidTransaction):
            await _deduct(budget["id"], amount)

    @pytest.mark.asyncio
    async def test_transfer_type_needs_transfer_operation(self):
        budget = await _budget()
        with pytest.raises(InvalidTransaction):
            await budgets.post_budget_transaction(
                TENANT, budget["id"], TransactionType.TRANSFER, money("10.00")
            )

    @pytest.mark.asyncio
    async def test_paused_budget_cannot_be_charged(self):
        budget = await _budget()
        await budgets.pause_budget(TENANT, budget["id"])
        with pytest.raises(InvalidTransaction):
            await _deduct(budget["id"], "10.00")

        await budgets.activate_budget(TENANT, budget["id"])
        entry = await _deduct(budget["id"], "10.00")
        assert entry["balance_after"] == "9990.00"

    @pytest.mark.asyncio
    async def test_locked_ancestor_blocks_descendants(self):
        parent = await _budget()
        child = await _budget("2000.00", name="Platform team", parent_id=parent["id"])
        await budgets.lock_budget(TENANT, parent["id"], reason="Audit")

        with pytest.raises(BudgetLocked) as exc_info:
            await _deduct(child["id"], "10.00")
        assert exc_info.value.details["blocking_budget_id"] == parent["id"]

        await budgets.unlock_budget(TENANT, parent["id"])
        entry = await _deduct(child["id"], "10.00")
        assert entry["balance_after"] == "1990.00"

    @pytest.mark.asyncio
    async def test_closed_budget_rejects_postings(self):
        budget = await _budget()
        await budgets.close_budget(TENANT, budget["id"])
        with pytest.raises(BudgetLocked):
            await _deduct(budget["id"], "10.00")
        with pytest.raises(InvalidTransaction):
            await budgets.close_budget(TENANT, budget["id"])

    @pytest.mark.asyncio
    async def test_concurrent_deductions_never_overdraw(self):
        budget = await _budget("1000.00")

        results = await asyncio.gather(
            *[_deduct(budget["id"], "150.00") for _ in range(10)],
            return_exceptions=True,
        )

        succeeded = [r for r in results if isinstance(r, dict)]
        refused = [r for r in results if isinstance(r, BudgetExceeded)]
        assert len(succeeded) == 6
        assert len(refused) == 4
        assert sorted(r["sequence"] for r in succeeded) == list(range(2, 8))

        current = await budgets.get_budget(TENANT, budget["id"])
        assert current["remaining_amount"] == "100.00"
        assert (await budgets.reconcile_budget(TENANT, budget["id"]))["consistent"]


class TestTransfers:
    @pytest.mark.asyncio
    async def test_transfer_moves_total_between_budgets(self):
        source = await _budget("5000.00", name="Sales")
        target = await _budget("1000.00", name="Marketing")

        result = await budgets.transfer(TENANT, source["id"], target["id"], money("1500.00"))

        assert result["debit"]["amount"] == "-1500.00"
        assert result["credit"]["amount"] == "1500.00"
        assert result["debit"]["transfer_group"] == result["credit"]["transfer_group"]
        assert result["debit"]["counterparty_budget_id"] == target["id"]

        assert (await budgets.get_budget(TENANT, source["id"]))["total_amount"] == "3500.00"
        assert (await budgets.get_budget(TENANT, target["id"]))["total_amount"] == "2500.00"

    @pytest.mark.asyncio
    async def test_failed_transfer_writes_nothing(self):
        source = await _budget("1000.00", name="Sales")
        target = await _budget("1000.00", name="Marketing")

        with pytest.raises(BudgetExceeded):
            await budgets.transfer(TENANT, source["id"], target["id"], money("1200.00"))

        for budget_id in (source["id"], target["id"]):
            assert len(await budgets.list_transactions(TENANT, budget_id)) == 1
            assert (await budgets.get_budget(TENANT, budget_id))["total_amount"] == "1000.00"

    @pytest.mark.asyncio
    async def test_transfer_to_self_rejected(self):
        budget = await _budget()
        with pytest.raises(InvalidTransaction):
            await budgets.transfer(TENANT, budget["id"], budget["id"], money("10.00"))

    @pytest.mark.asyncio
    async def test_currency_mismatch_rejected(self):
        source = await _budget(name="EU")
        target = await _budget(name="US", currency="USD")
        with pytest.raises(InvalidTransaction):
            await budgets.transfer(TENANT, source["id"], target["id"], money("10.00"))


class TestAllocations:
    @pytest.mark.asyncio
    async def test_allocation_earmarks_unallocated_amount(self):
        budget = await _budget()
        allocation = await budgets.create_allocation(
            TENANT, budget["id"], AllocationTarget.AGREEMENT, 42, money("6000.00")
        )
        assert allocation["remaining_amount"] == "6000.00"

        with pytest.raises(AllocationExceeded):
            await budgets.create_allocation(
                TENANT, budget["id"], AllocationTarget.PROJECT, 7, money("4000.01")
            )

    @pytest.mark.asyncio
    async def test_duplicate_target_rejected(self):
        budget = await _budget()
        await budgets.create_allocation(
            TENANT, budget["id"], AllocationTarget.AGREEMENT, 42, money("100.00")
        )
        with pytest.raises(InvalidTransaction):
            await budgets.create_allocation(
                TENANT, budget["id"], AllocationTarget.AGREEMENT, 42, money("100.00")
            )

    @pytest.mark.asyncio
    async def test_deduction_against_allocation(self):
        budget = await _budget()
        allocation = await budgets.create_allocation(
            TENANT, budget["id"], AllocationTarget.AGREEMENT, 42, money("1000.00")
        )

        await _deduct(budget["id"], "400.00", allocation_id=allocation["id"])
        [current] = await budgets.list_allocations(TENANT, budget["id"])
        assert current["spent_amount"] == "400.00"
        assert current["remaining_amount"] == "600.00"
        assert (await budgets.get_budget(TENANT, budget["id"]))["allocated_amount"] == "600.00"

        with pytest.raises(AllocationExceeded):
            await _deduct(budget["id"], "600.01", allocation_id=allocation["id"])
        assert (await budgets.reconcile_budget(TENANT, budget["id"]))["consistent"]


class TestAlerts:
    @pytest.mark.asyncio
    async def test_alert_fires_once_on_upward_crossing(self, sent_tasks):
        budget = await _budget("1000.00")
        alert = await budgets.create_budget_alert(
            TENANT, budget["id"], threshold_percentage=money(80), severity=AlertSeverity.CRITICAL
        )
        assert not alert["is_triggered"]

        await _deduct(budget["id"], "700.00")
        assert not sent_tasks.called

        await _deduct(budget["id"], "150.00")
        assert sent_tasks.call_count == 1
        args, kwargs = sent_tasks.call_args
        assert args[0] == BUDGET_ALERT_TASK
        assert kwargs["queue"] == "notifications"
        payload = kwargs["kwargs"]["payload"]
        assert payload["alert_id"] == alert["id"]
        assert payload["severity"] == "CRITICAL"
        assert payload["utilization_percentage"] == "85.00"

        await _deduct(budget["id"], "50.00")
        assert sent_tasks.call_count == 1

        [stored] = await budgets.list_budget_alerts(TENANT, budget["id"], triggered_only=True)
        assert stored["last_notified_status"] == "PENDING"

    @pytest.mark.asyncio
    async def test_resolved_alert_rearms(self, sent_tasks):
        budget = await _budget("1000.00")
        alert = await budgets.create_budget_alert(
            TENANT, budget["id"], threshold_amount=money("500.00")
        )
        await _deduct(budget["id"], "600.00")
        await budgets.resolve_budget_alert(TENANT, alert["id"])

        # Still above the threshold: only a new crossing fires it again
        await _deduct(budget["id"], "10.00")
        assert sent_tasks.call_count == 1

        await budgets.post_budget_transaction(
            TENANT, budget["id"], TransactionType.REFUND, money("300.00")
        )
        await _deduct(budget["id"], "300.00")
        assert sent_tasks.call_count == 2

    @pytest.mark.asyncio
    async def test_alert_created_past_threshold_fires_immediately(self, sent_tasks):
        budget = await _budget("1000.00")
        await _deduct(budget["id"], "900.00")

        alert = await budgets.create_budget_alert(
            TENANT, budget["id"], threshold_percentage=money(75)
        )
        assert alert["is_triggered"]
        assert sent_tasks.call_count == 1

    @pytest.mark.asyncio
    async def test_alert_needs_a_threshold(self):
        budget = await _budget()
        with pytest.raises(InvalidTransaction):
            await budgets.create_budget_alert(TENANT, budget["id"])

    @pytest.mark.asyncio
    async def test_resolve_untriggered_alert_rejected(self):
        budget = await _budget()
        alert = await budgets.create_budget_alert(
            TENANT, budget["id"], threshold_percentage=money(50)
        )
        with pytest.raises(InvalidTransaction):
            await budgets.resolve_budget_alert(TENANT, alert["id"])

    @pytest.mark.asyncio
    async def test_mark_alert_notified(self):
        budget = await _budget("100.00")
        alert = await budgets.create_budget_alert(
            TENANT, budget["id"], threshold_percentage=money(50)
        )
        await _deduct(budget["id"], "60.00")

        await budgets.mark_alert_notified(alert["id"], "SENT")
        [stored] = await budgets.list_budget_alerts(TENANT, budget["id"])
        assert stored["last_notified_status"] == "SENT"


class TestReporting:
    @pytest.mark.asyncio
    async def test_utilization_and_burn_rate(self):
        start, end = period(days_back=9)
        budget = await _budget(period=(start, end))
        await _deduct(budget["id"], "600.00")
        await _deduct(budget["id"], "400.00")

        utilization = await budgets.get_budget_utilization(TENANT, budget["id"])

        assert utilization["percentage"] == "10.00"
        assert utilization["burn_rate"] == "100.00"
        assert utilization["days_remaining"] == 90
        assert utilization["deduction_count"] == 2
        assert not utilization["is_over_budget"]

    @pytest.mark.asyncio
    async def test_nothing_spent_has_no_projection(self):
        budget = await _budget()
        utilization = await budgets.get_budget_utilization(TENANT, budget["id"])
        assert utilization["burn_rate"] == "0.00"
        assert utilization["days_remaining"] is None
        assert utilization["last_deduction_at"] is None

    @pytest.mark.asyncio
    async def test_ledger_replays_to_balances(self):
        budget = await _budget("5000.00")
        other = await _budget("5000.00", name="Other")
        await _deduct(budget["id"], "1200.00")
        await budgets.post_budget_transaction(
            TENANT, budget["id"], TransactionType.REFUND, money("200.00")
        )
        await budgets.post_budget_transaction(
            TENANT, budget["id"], TransactionType.ADJUSTMENT, money("750.00")
        )
        await budgets.transfer(TENANT, budget["id"], other["id"], money("500.00"))

        report = await budgets.reconcile_budget(TENANT, budget["id"])

        assert report["consistent"]
        assert report["gapless"]
        assert report["transactions"] == 5
        assert report["expected"]["remaining_amount"] == "4250.00"
        assert report["actual"]["spent_amount"] == "1000.00"

    @pytest.mark.asyncio
    async def test_ledger_is_newest_first(self):
        budget = await _budget()
        await _deduct(budget["id"], "1.00")
        await _deduct(budget["id"], "2.00")

        ledger = await budgets.list_transactions(TENANT, budget["id"])
        assert [t["sequence"] for t in ledger] == [3, 2, 1]

        deductions = await budgets.list_transactions(
            TENANT, budget["id"], transaction_type=TransactionType.DEDUCTION
        )
        assert [t["amount"] for t in deductions] == ["2.00", "1.00"]

    @pytest.mark.asyncio
    async def test_list_budgets_by_status(self):
        await _budget(name="Active")
        draft = await _budget(name="Draft", status=BudgetStatus.DRAFT)

        listed = await budgets.list_budgets(TENANT, status=BudgetStatus.DRAFT)
        assert [b["id"] for b in listed] == [draft["id"]]
        assert await budgets.list_budgets(OTHER_TENANT) == []


class TestRollups:
    async def _tree(self) -> tuple[dict, dict, dict, dict]:
        root = await _budget(name="Acme 2026")
        platform = await _budget("2000.00", name="Platform team", parent_id=root["id"])
        sre = await _budget("1000.00", name="SRE", parent_id=platform["id"])
        sales = await _budget("3000.00", name="Sales", parent_id=root["id"])
        await _deduct(platform["id"], "500.00")
        await _deduct(sre["id"], "200.00")
        return root, platform, sre, sales

    @pytest.mark.asyncio
    async def test_summary_aggregates_descendant_spend(self):
        root, platform, _, _ = await self._tree()

        summary = await budgets.get_budget_summary(TENANT, root["id"])
        assert summary["budget"]["id"] == root["id"]
        assert summary["children_count"] == 2
        assert summary["descendant_count"] == 3
        assert summary["total_descendant_spend"] == "700.00"
        assert summary["utilization"]["spent_amount"] == "0.00"
        assert [t["sequence"] for t in summary["recent_transactions"]] == [1]
        assert summary["active_alerts"] == []

        nested = await budgets.get_budget_summary(TENANT, platform["id"])
        assert nested["children_count"] == 1
        assert nested["total_descendant_spend"] == "200.00"

    @pytest.mark.asyncio
    async def test_summary_lists_only_recent_postings(self):
        budget = await _budget()
        for _ in range(7):
            await _deduct(budget["id"], "1.00")

        summary = await budgets.get_budget_summary(TENANT, budget["id"])
        assert [t["sequence"] for t in summary["recent_transactions"]] == [8, 7, 6, 5, 4]
        assert summary["descendant_count"] == 0
        assert summary["total_descendant_spend"] == "0.00"

    @pytest.mark.asyncio
    async def test_consolidated_totals_keep_levels_apart(self):
        await self._tree()
        await _budget("400.00", name="Draft plan", status=BudgetStatus.DRAFT)

        groups = {
            (g["level"], g["status"]): g for g in await budgets.get_consolidated_budgets(TENANT)
        }
        assert set(groups) == {("COMPANY", "ACTIVE"), ("COMPANY", "DRAFT"), ("DEPARTMENT", "ACTIVE")}

        departments = groups[("DEPARTMENT", "ACTIVE")]
        assert departments["budget_count"] == 3
        assert departments["total_amount"] == "6000.00"
        assert departments["spent_amount"] == "700.00"
        assert departments["remaining_amount"] == "5300.00"
        assert departments["utilization_percentage"] == "11.67"
        assert groups[("COMPANY", "ACTIVE")]["total_amount"] == "10000.00"
        assert groups[("COMPANY", "DRAFT")]["budget_count"] == 1
        assert await budgets.get_consolidated_budgets(OTHER_TENANT) == []

    @pytest.mark.asyncio
    async def test_job_budget_check(self):
        root, platform, _, _ = await self._tree()
        job = await make_job(budget_id=platform["id"])

        check = await budgets.get_budget_for_job(TENANT, job["id"])
        assert check["has_budget"] is True
        assert check["can_submit_candidates"] is True
        assert check["budget_remaining"] == "1500.00"
        assert "total_amount" not in check

        await budgets.lock_budget(TENANT, root["id"], reason="Audit")
        blocked = await budgets.get_budget_for_job(TENANT, job["id"])
        assert blocked["can_submit_candidates"] is False
        assert blocked["message"] == f"Parent budget {root['id']} is locked or closed"

    @pytest.mark.asyncio
    async def test_job_budget_check_on_exhausted_or_missing_budget(self):
        budget = await _budget("100.00")
        await _deduct(budget["id"], "100.00")
        funded = await make_job(budget_id=budget["id"])
        unfunded = await make_job(title="Data Engineer")

        exhausted = await budgets.get_budget_for_job(TENANT, funded["id"])
        assert exhausted["can_submit_candidates"] is False
        assert exhausted["message"] == "Budget is DEPLETED"

        open_ended = await budgets.get_budget_for_job(TENANT, unfunded["id"])
        assert open_ended["has_budget"] is False
        assert open_ended["can_submit_candidates"] is True

        with pytest.raises(NotFound):
            await budgets.get_budget_for_job(OTHER_TENANT, funded["id"])
