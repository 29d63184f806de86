"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ZRS CRM - Approval Gate Tests                                               ║
║                                                                              ║
║  1. Quorum policies (distinct admins / distinct groups)                      ║
║  2. Purchase order dual approval end to end                                  ║
║     (or through the lead's two-group quorum)                                 ║
║  3. Admin group configuration rules                                          ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import pytest

from services import lead_lifecycle, purchase_orders
from services.approval_gate import (
    LEAD_POLICY,
    PURCHASE_ORDER_POLICY,
    approval_status,
    commit_approval,
    list_admin_groups,
    record_approval,
    resolve_admin_group,
    update_admin_groups,
    validate_admin_groups,
)
from services.errors import (
    AccessDeniedError,
    ConcurrentUpdateError,
    DuplicateApprovalError,
    NotInGroupError,
    PreconditionError,
    ValidationError,
)
from tests.factories import (
    ADMIN_A1,
    ADMIN_A2,
    ADMIN_B1,
    MANAGER,
    approve_by_both_groups,
    build_ready_lead,
    seed_investor,
)


async def insert_purchase_order(database, po_id="po-1", amount=100000, allocated=100000):
    doc = {
        "id": po_id,
        "po_number": "PO0001",
        "seq": 1,
        "lead_id": "lead-1",
        "amount": amount,
        "investor_allocations": [{"investor_id": "inv1", "percentage": 100, "amount": allocated}],
        "status": "draft",
        "approvals": [],
        "version": 0,
    }
    await database.purchase_orders.insert_one(dict(doc))
    return doc


class TestQuorumPolicies:

    def test_distinct_approvers_met_at_two(self):
        approvals, _, quorum = record_approval([], "admin-1", PURCHASE_ORDER_POLICY)
        assert quorum is False
        approvals, _, quorum = record_approval(approvals, "admin-2", PURCHASE_ORDER_POLICY)
        assert quorum is True
        assert approval_status(approvals, PURCHASE_ORDER_POLICY) == "approved"
        print("✅ two distinct admins meet the count quorum")

    def test_same_admin_twice_rejected(self):
        approvals, _, _ = record_approval([], "admin-1", PURCHASE_ORDER_POLICY)
        with pytest.raises(DuplicateApprovalError) as exc_info:
            record_approval(approvals, "admin-1", PURCHASE_ORDER_POLICY)
        assert "already approved" in str(exc_info.value)
        assert isinstance(exc_info.value, AccessDeniedError)
        assert len(approvals) == 1
        print("✅ duplicate approval rejected")

    def test_same_group_twice_is_not_quorum(self):
        """Two approvals from Group A: length 2, quorum not met"""
        approvals, _, _ = record_approval([], "admin-a1", LEAD_POLICY, group_name="Group A")
        approvals, _, quorum = record_approval(approvals, "admin-a2", LEAD_POLICY, group_name="Group A")
        assert len(approvals) == 2
        assert quorum is False
        assert approval_status(approvals, LEAD_POLICY) == "pending"
        print("✅ same-group approvals do not meet group quorum")

    def test_two_groups_meet_quorum(self):
        approvals, _, _ = record_approval([], "admin-a1", LEAD_POLICY, group_name="Group A")
        _, entry, quorum = record_approval(approvals, "admin-b1", LEAD_POLICY, group_name="Group B")
        assert quorum is True
        assert entry["group_name"] == "Group B"

    def test_group_policy_requires_a_group(self):
        with pytest.raises(NotInGroupError):
            record_approval([], "admin-x", LEAD_POLICY, group_name=None)

    def test_empty_is_not_submitted(self):
        assert approval_status([], PURCHASE_ORDER_POLICY) == "not_submitted"


class TestConditionalCommit:

    @pytest.mark.asyncio
    async def test_stale_version_rejected(self, database):
        """A write against an outdated snapshot never lands"""
        po = await insert_purchase_order(database)
        _, entry, _ = record_approval([], "admin-1", PURCHASE_ORDER_POLICY)
        await commit_approval(database.purchase_orders, po, "approvals", entry, {"status": "pending_approval"})

        _, other, _ = record_approval([], "admin-2", PURCHASE_ORDER_POLICY)
        with pytest.raises(ConcurrentUpdateError):
            await commit_approval(database.purchase_orders, po, "approvals", other, {"status": "approved"})

        fresh = await database.purchase_orders.find_one({"id": po["id"]})
        assert [a["admin_id"] for a in fresh["approvals"]] == ["admin-1"]
        assert fresh["status"] == "pending_approval"
        assert fresh["version"] == 1
        print("✅ stale snapshot rejected")

    @pytest.mark.asyncio
    async def test_racing_duplicate_reported_as_duplicate(self, database):
        po = await insert_purchase_order(database)
        _, entry, _ = record_approval([], "admin-1", PURCHASE_ORDER_POLICY)
        await commit_approval(database.purchase_orders, po, "approvals", entry, {"status": "pending_approval"})
        with pytest.raises(DuplicateApprovalError):
            await commit_approval(database.purchase_orders, po, "approvals", entry, {"status": "pending_approval"})


class TestPurchaseOrderApproval:

    @pytest.mark.asyncio
    async def test_dual_approval_flow(self, seeded):
        """One approval -> pending_approval, second admin -> approved, repeat -> duplicate"""
        await insert_purchase_order(seeded)

        po = await purchase_orders.approve_purchase_order("po-1", ADMIN_A1)
        assert po["status"] == "pending_approval"

        po = await purchase_orders.approve_purchase_order("po-1", ADMIN_A2, comments="ok")
        assert po["status"] == "approved"
        assert len(po["approvals"]) == 2

        for admin in (ADMIN_A1, ADMIN_A2):
            with pytest.raises(DuplicateApprovalError):
                await purchase_orders.approve_purchase_order("po-1", admin)
        print("✅ PO dual approval")

    @pytest.mark.asyncio
    async def test_third_admin_cannot_approve_approved_po(self, seeded):
        await insert_purchase_order(seeded)
        await purchase_orders.approve_purchase_order("po-1", ADMIN_A1)
        await purchase_orders.approve_purchase_order("po-1", ADMIN_A2)
        with pytest.raises(PreconditionError):
            await purchase_orders.approve_purchase_order("po-1", ADMIN_B1)

    @pytest.mark.asyncio
    async def test_misaligned_allocation_blocks_approval(self, seeded):
        await insert_purchase_order(seeded, allocated=90000)
        with pytest.raises(PreconditionError) as exc_info:
            await purchase_orders.approve_purchase_order("po-1", ADMIN_A1)
        assert "must equal the purchase order amount" in str(exc_info.value)
        po = await seeded.purchase_orders.find_one({"id": "po-1"})
        assert po["approvals"] == []

    @pytest.mark.asyncio
    async def test_manager_cannot_approve(self, seeded):
        await insert_purchase_order(seeded)
        with pytest.raises(AccessDeniedError):
            await purchase_orders.approve_purchase_order("po-1", MANAGER)

    @pytest.mark.asyncio
    async def test_decline_resets_to_draft(self, seeded):
        await insert_purchase_order(seeded)
        await purchase_orders.approve_purchase_order("po-1", ADMIN_A1)
        po = await purchase_orders.decline_purchase_order("po-1", ADMIN_B1, reason="wrong costs")
        assert po["status"] == "draft"
        assert po["approvals"] == []
        # a fresh cycle accepts the same admin again
        po = await purchase_orders.approve_purchase_order("po-1", ADMIN_A1)
        assert po["status"] == "pending_approval"

    @pytest.mark.asyncio
    async def test_lead_quorum_approves_its_po(self, seeded, collaborators):
        """The two lead approvers are the PO approvers; the PO follows the lead back to draft"""
        await seed_investor(seeded, "inv1")
        lead = await build_ready_lead([{"investor_id": "inv1", "percentage": 100}])
        result = await approve_by_both_groups(lead["id"], collaborators)

        po = result["purchase_order"]
        assert po["status"] == "approved"
        assert po["approved_via"] == "lead_approval"
        assert [a["admin_id"] for a in po["approvals"]] == [ADMIN_A1.id, ADMIN_B1.id]

        with pytest.raises(DuplicateApprovalError):
            await purchase_orders.approve_purchase_order(po["id"], ADMIN_A1)
        with pytest.raises(PreconditionError) as exc_info:
            await purchase_orders.approve_purchase_order(po["id"], ADMIN_A2)
        assert "approved together with its lead" in str(exc_info.value)
        with pytest.raises(PreconditionError) as exc_info:
            await purchase_orders.decline_purchase_order(po["id"], ADMIN_B1)
        assert "decline the lead instead" in str(exc_info.value)
        with pytest.raises(PreconditionError):
            await purchase_orders.upsert_purchase_order(lead, ADMIN_A1, {"transfer_cost": 500})

        await lead_lifecycle.decline_lead(lead["id"], ADMIN_B1, reason="Recheck costs")
        po = await purchase_orders.get_purchase_order(po["id"])
        assert po["status"] == "draft"
        assert po["approvals"] == []
        po = await purchase_orders.upsert_purchase_order(lead, ADMIN_A1, {"transfer_cost": 500})
        assert po["costs"]["transfer_cost"] == 500
        print("✅ lead approval stands in for the PO approval")


class TestAdminGroups:

    @pytest.mark.asyncio
    async def test_default_groups_seeded(self, database):
        groups = await list_admin_groups()
        assert [g["name"] for g in groups] == ["Group A", "Group B"]
        assert all(g["members"] == [] for g in groups)

    @pytest.mark.asyncio
    async def test_resolve_group(self, seeded):
        assert await resolve_admin_group(ADMIN_A1.id) == "Group A"
        assert await resolve_admin_group(ADMIN_B1.id) == "Group B"
        assert await resolve_admin_group("nobody") is None

    def test_exactly_two_groups(self):
        with pytest.raises(ValidationError):
            validate_admin_groups([{"name": "Group A", "members": []}])

    def test_group_size_limit(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_admin_groups([
                {"name": "Group A", "members": ["a", "b", "c"]},
                {"name": "Group B", "members": []},
            ])
        assert "more than 2" in str(exc_info.value)

    def test_admin_in_both_groups_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_admin_groups([
                {"name": "Group A", "members": ["a"]},
                {"name": "Group B", "members": ["a"]},
            ])
        assert "cannot belong to both" in str(exc_info.value)
        print("✅ no admin in two groups")

    @pytest.mark.asyncio
    async def test_update_requires_existing_admins(self, seeded):
        with pytest.raises(ValidationError):
            await update_admin_groups(
                [{"name": "Group A", "members": ["ghost"]}, {"name": "Group B", "members": []}], ADMIN_A1.id
            )

    @pytest.mark.asyncio
    async def test_update_replaces_groups(self, seeded):
        groups = await update_admin_groups(
            [{"name": "Group A", "members": [ADMIN_A1.id]}, {"name": "Group B", "members": [ADMIN_A2.id]}],
            ADMIN_A1.id,
        )
        assert [g["members"] for g in groups] == [[ADMIN_A1.id], [ADMIN_A2.id]]
        assert await resolve_admin_group(ADMIN_A2.id) == "Group B"
