"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ZRS CRM - Credit Ledger Tests                                               ║
║                                                                              ║
║  1. Capacity check                                                           ║
║  2. Reserve is atomic and idempotent per (investor, lead)                    ║
║  3. Release settles once and gives back the recorded amount                  ║
║  4. Credit limit never drops below what is utilized                          ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import asyncio

import pytest

from services import credit_ledger
from services.errors import InsufficientCreditError, NotFoundError, ValidationError
from tests.factories import seed_investor


class TestCapacity:

    @pytest.mark.asyncio
    async def test_within_capacity(self, database):
        """Amount up to the remaining credit is accepted"""
        await seed_investor(database, "inv1", credit_limit=100000, utilized_amount=40000)
        investor = await credit_ledger.check_capacity("inv1", 60000)
        assert investor["id"] == "inv1"
        print("✅ 60000 fits in 100000 - 40000")

    @pytest.mark.asyncio
    async def test_above_capacity_names_amounts(self, database):
        """Error message carries available and required amounts"""
        await seed_investor(database, "inv1", name="Khalid", credit_limit=100000, utilized_amount=40000)
        with pytest.raises(InsufficientCreditError) as exc_info:
            await credit_ledger.check_capacity("inv1", 60000.01)
        assert "Insufficient credit for investor Khalid: available 60000.00, required 60000.01" in str(exc_info.value)
        assert exc_info.value.details["available"] == 60000.0
        assert exc_info.value.details["required"] == 60000.01
        print(f"✅ {exc_info.value}")

    @pytest.mark.asyncio
    async def test_unknown_investor(self, database):
        with pytest.raises(NotFoundError):
            await credit_ledger.check_capacity("ghost", 1)


class TestReserve:

    @pytest.mark.asyncio
    async def test_reserve_increments_and_records(self, database):
        await seed_investor(database, "inv1", credit_limit=500000)
        outcome = await credit_ledger.reserve("inv1", 103000, {"lead_id": "lead-1", "purchase_order_id": "po-1",
                                                               "percentage": 100})
        assert outcome["reserved"] is True
        investor = await database.investors.find_one({"id": "inv1"})
        assert investor["utilized_amount"] == 103000
        assert len(investor["investments"]) == 1
        assert investor["investments"][0]["status"] == "active"
        assert investor["investments"][0]["amount"] == 103000
        print("✅ reserve recorded")

    @pytest.mark.asyncio
    async def test_reserve_twice_is_noop(self, database):
        """Second reserve for the same lead changes nothing"""
        await seed_investor(database, "inv1", credit_limit=500000)
        await credit_ledger.reserve("inv1", 1000, {"lead_id": "lead-1"})
        outcome = await credit_ledger.reserve("inv1", 1000, {"lead_id": "lead-1"})
        assert outcome["reserved"] is False
        investor = await database.investors.find_one({"id": "inv1"})
        assert investor["utilized_amount"] == 1000
        assert len(investor["investments"]) == 1
        print("✅ idempotent reserve")

    @pytest.mark.asyncio
    async def test_reserve_above_limit_leaves_state(self, database):
        await seed_investor(database, "inv1", credit_limit=1000, utilized_amount=500)
        with pytest.raises(InsufficientCreditError):
            await credit_ledger.reserve("inv1", 501, {"lead_id": "lead-1"})
        investor = await database.investors.find_one({"id": "inv1"})
        assert investor["utilized_amount"] == 500
        assert investor["investments"] == []

    @pytest.mark.asyncio
    async def test_concurrent_reserves_never_exceed_limit(self, database):
        """Two leads racing for the same capacity: only one commits"""
        await seed_investor(database, "inv1", credit_limit=1000)
        results = await asyncio.gather(
            credit_ledger.reserve("inv1", 800, {"lead_id": "lead-1"}),
            credit_ledger.reserve("inv1", 800, {"lead_id": "lead-2"}),
            return_exceptions=True,
        )
        committed = [r for r in results if isinstance(r, dict) and r["reserved"]]
        rejected = [r for r in results if isinstance(r, InsufficientCreditError)]
        assert len(committed) == 1
        assert len(rejected) == 1
        investor = await database.investors.find_one({"id": "inv1"})
        assert investor["utilized_amount"] == 800
        print("✅ no over-commit under contention")

    @pytest.mark.asyncio
    async def test_zero_amount_rejected(self, database):
        await seed_investor(database, "inv1")
        with pytest.raises(ValidationError):
            await credit_ledger.reserve("inv1", 0, {"lead_id": "lead-1"})

    @pytest.mark.asyncio
    async def test_exact_fit_after_fractional_reservations(self, database):
        """0.1 + 0.2 leaves float residue in utilized_amount; the last 999.70 still fits"""
        await seed_investor(database, "inv1", credit_limit=1000)
        await credit_ledger.reserve("inv1", 0.1, {"lead_id": "lead-1"})
        await credit_ledger.reserve("inv1", 0.2, {"lead_id": "lead-2"})

        await credit_ledger.check_capacity("inv1", 999.70)
        outcome = await credit_ledger.reserve("inv1", 999.70, {"lead_id": "lead-3"})
        assert outcome["reserved"] is True

        investor = await database.investors.find_one({"id": "inv1"}, {"_id": 0})
        assert credit_ledger.remaining_credit(investor) == 0
        with pytest.raises(InsufficientCreditError):
            await credit_ledger.reserve("inv1", 0.01, {"lead_id": "lead-4"})
        print("✅ investor filled to the cent")


class TestRelease:

    @pytest.mark.asyncio
    async def test_reserve_then_release_restores_utilization(self, database):
        await seed_investor(database, "inv1", credit_limit=500000, utilized_amount=25000)
        await credit_ledger.reserve("inv1", 103000, {"lead_id": "lead-1"})
        settled = await credit_ledger.release("inv1", 103000, lead_id="lead-1")
        assert settled["status"] == "settled"
        investor = await database.investors.find_one({"id": "inv1"})
        assert investor["utilized_amount"] == 25000
        assert investor["investments"][0]["status"] == "settled"
        assert investor["investments"][0]["settled_at"]
        print("✅ reserve + release is neutral")

    @pytest.mark.asyncio
    async def test_release_uses_recorded_amount(self, database):
        """A different amount argument is ignored in favour of the investment's own"""
        await seed_investor(database, "inv1", credit_limit=500000)
        outcome = await credit_ledger.reserve("inv1", 5000, {"lead_id": "lead-1"})
        await credit_ledger.release("inv1", 9999, investment_id=outcome["investment"]["id"])
        investor = await database.investors.find_one({"id": "inv1"})
        assert investor["utilized_amount"] == 0

    @pytest.mark.asyncio
    async def test_release_twice_settles_once(self, database):
        await seed_investor(database, "inv1", credit_limit=500000)
        await credit_ledger.reserve("inv1", 5000, {"lead_id": "lead-1"})
        assert await credit_ledger.release("inv1", lead_id="lead-1") is not None
        assert await credit_ledger.release("inv1", lead_id="lead-1") is None
        investor = await database.investors.find_one({"id": "inv1"})
        assert investor["utilized_amount"] == 0
        print("✅ second release is a no-op")

    @pytest.mark.asyncio
    async def test_release_missing_investment_is_noop(self, database):
        await seed_investor(database, "inv1", utilized_amount=100)
        assert await credit_ledger.release("inv1", 100, lead_id="unknown") is None
        assert await credit_ledger.release("ghost", 100, lead_id="unknown") is None
        investor = await database.investors.find_one({"id": "inv1"})
        assert investor["utilized_amount"] == 100

    @pytest.mark.asyncio
    async def test_cancelled_reservation_frees_the_lead(self, database):
        """Compensation: capacity returns and the lead can be reserved again"""
        await seed_investor(database, "inv1", credit_limit=10000)
        await credit_ledger.reserve("inv1", 6000, {"lead_id": "lead-1"})
        cancelled = await credit_ledger.cancel_reservation("inv1", "lead-1")
        assert cancelled["status"] == "cancelled"
        outcome = await credit_ledger.reserve("inv1", 6000, {"lead_id": "lead-1"})
        assert outcome["reserved"] is True
        investor = await database.investors.find_one({"id": "inv1"})
        assert investor["utilized_amount"] == 6000


class TestLimits:

    @pytest.mark.asyncio
    async def test_limit_below_utilized_rejected(self, database):
        await seed_investor(database, "inv1", credit_limit=100000, utilized_amount=70000)
        with pytest.raises(ValidationError) as exc_info:
            await credit_ledger.update_credit_limit("inv1", 69999.99)
        assert "Credit limit cannot be less than utilized amount (70000.00)" in str(exc_info.value)
        investor = await database.investors.find_one({"id": "inv1"})
        assert investor["credit_limit"] == 100000

    @pytest.mark.asyncio
    async def test_limit_update(self, database):
        await seed_investor(database, "inv1", credit_limit=100000, utilized_amount=70000)
        investor = await credit_ledger.update_credit_limit("inv1", 70000)
        assert investor["credit_limit"] == 70000

    @pytest.mark.asyncio
    async def test_limit_down_to_fractional_utilization(self, database):
        await seed_investor(database, "inv1", credit_limit=1000)
        await credit_ledger.reserve("inv1", 0.1, {"lead_id": "lead-1"})
        await credit_ledger.reserve("inv1", 0.2, {"lead_id": "lead-2"})
        investor = await credit_ledger.update_credit_limit("inv1", 0.3)
        assert investor["credit_limit"] == 0.3

    @pytest.mark.asyncio
    async def test_summary(self, database):
        await seed_investor(database, "inv1", credit_limit=100000)
        await credit_ledger.reserve("inv1", 10000, {"lead_id": "lead-1"})
        await credit_ledger.reserve("inv1", 20000, {"lead_id": "lead-2"})
        await credit_ledger.release("inv1", lead_id="lead-1")
        summary = await credit_ledger.investment_summary("inv1")
        assert summary["active_count"] == 1
        assert summary["active_amount"] == 20000
        assert summary["settled_amount"] == 10000
        assert summary["remaining_credit"] == 80000
        print(f"✅ summary: {summary['remaining_credit']} remaining")
