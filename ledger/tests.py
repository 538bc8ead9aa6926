"""
Test suite for the ownership ledger
Tests: hashing, genesis/link invariants, verification, immutability,
owner projection recovery, management commands and periodic sweeps
"""
import hashlib
import json
import uuid
from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.db import IntegrityError
from django.test import TestCase

from core.exceptions import ProductNotFound
from core.models import OwnershipTransfer, Participant, Product, editable_fields_for_role
from core.services.transfers import request_transfer
from core.test_utils import TestDataFactory
from ledger.celery_tasks import reconcile_owners_tick, verify_chains_tick
from ledger.exceptions import BlockImmutableError, ChainWriteError
from ledger.models import OwnershipBlock, TransferType
from ledger.services import (
    BROKEN_LINK,
    HASH_MISMATCH,
    MISSING_GENESIS,
    OUT_OF_SEQUENCE,
    append_block,
    compute_ownership_hash,
    find_owner_divergence,
    get_chain,
    reconcile_product_owner,
    verify_blocks,
    verify_chain,
)


class OwnershipHashTests(TestCase):
    """compute_ownership_hash is a plain SHA-256 over canonical JSON"""

    def test_genesis_hash_uses_marker(self):
        product_id, owner_id = uuid.uuid4(), uuid.uuid4()
        expected = hashlib.sha256(json.dumps(
            {
                "block_number": 1,
                "owner_id": str(owner_id),
                "previous_owner_hash": "genesis",
                "product_id": str(product_id),
            },
            sort_keys=True,
            separators=(",", ":"),
        ).encode("utf-8")).hexdigest()

        self.assertEqual(
            compute_ownership_hash(
                product_id=product_id, owner_id=owner_id, block_number=1, previous_owner_hash=None
            ),
            expected,
        )

    def test_hash_accepts_string_ids(self):
        product_id, owner_id = uuid.uuid4(), uuid.uuid4()
        a = compute_ownership_hash(
            product_id=product_id, owner_id=owner_id, block_number=2, previous_owner_hash="ab" * 32
        )
        b = compute_ownership_hash(
            product_id=str(product_id), owner_id=str(owner_id), block_number="2", previous_owner_hash="ab" * 32
        )
        self.assertEqual(a, b)
        self.assertEqual(len(a), 64)

    def test_hash_depends_on_every_input(self):
        product_id, owner_id = uuid.uuid4(), uuid.uuid4()
        base = dict(product_id=product_id, owner_id=owner_id, block_number=2, previous_owner_hash="ab" * 32)
        reference = compute_ownership_hash(**base)
        for key, value in (
            ("product_id", uuid.uuid4()),
            ("owner_id", uuid.uuid4()),
            ("block_number", 3),
            ("previous_owner_hash", "cd" * 32),
        ):
            changed = dict(base, **{key: value})
            self.assertNotEqual(compute_ownership_hash(**changed), reference, key)


class ChainAppendTests(TestCase):
    """Genesis, link and numbering invariants"""

    def setUp(self):
        self.farmer = TestDataFactory.create_participant(role=Participant.Role.FARMER)
        self.distributor = TestDataFactory.create_participant(role=Participant.Role.DISTRIBUTOR)
        self.retailer = TestDataFactory.create_participant(role=Participant.Role.RETAILER)
        self.product = TestDataFactory.create_product(owner=self.farmer)

    def test_registration_writes_genesis(self):
        chain = get_chain(self.product.pk)
        self.assertEqual(len(chain), 1)
        genesis = chain[0]
        self.assertEqual(genesis.block_number, 1)
        self.assertIsNone(genesis.previous_owner_hash)
        self.assertEqual(genesis.transfer_type, TransferType.INITIAL)
        self.assertEqual(genesis.owner_id, self.farmer.pk)
        self.assertEqual(genesis.added_by, self.farmer.pk)
        self.assertEqual(genesis.role, Participant.Role.FARMER)
        self.assertEqual(genesis.can_edit_fields, editable_fields_for_role(Participant.Role.FARMER))
        self.assertEqual(
            genesis.ownership_hash,
            compute_ownership_hash(
                product_id=self.product.pk,
                owner_id=self.farmer.pk,
                block_number=1,
                previous_owner_hash=None,
            ),
        )

    def test_next_block_links_to_previous(self):
        _, block = TestDataFactory.hand_over(self.product, self.distributor)
        genesis = get_chain(self.product.pk)[0]

        self.assertEqual(block.block_number, 2)
        self.assertEqual(block.previous_owner_hash, genesis.ownership_hash)
        self.assertEqual(block.owner_id, self.distributor.pk)
        self.assertEqual(block.added_by, self.farmer.pk)
        self.assertEqual(block.can_edit_fields, editable_fields_for_role(Participant.Role.DISTRIBUTOR))

    def test_block_numbers_are_contiguous(self):
        for owner in (self.distributor, self.retailer, self.distributor):
            append_block(
                product_id=self.product.pk,
                owner_id=owner.pk,
                role=owner.role,
                username=owner.username,
                name=owner.name,
                added_by=self.farmer.pk,
                transfer_type=TransferType.TRANSFER,
                can_edit_fields=[],
            )
        numbers = [b.block_number for b in get_chain(self.product.pk)]
        self.assertEqual(numbers, [1, 2, 3, 4])
        self.assertTrue(verify_chain(self.product.pk)["valid"])

    def test_append_to_unknown_product(self):
        with self.assertRaises(ProductNotFound):
            append_block(
                product_id=uuid.uuid4(),
                owner_id=self.farmer.pk,
                role=self.farmer.role,
                username=self.farmer.username,
                name=self.farmer.name,
                added_by=self.farmer.pk,
                transfer_type=TransferType.TRANSFER,
                can_edit_fields=[],
            )

    def test_write_failure_maps_to_chain_write_error(self):
        with mock.patch.object(OwnershipBlock.objects, "create", side_effect=IntegrityError("duplicate")):
            with self.assertRaises(ChainWriteError):
                append_block(
                    product_id=self.product.pk,
                    owner_id=self.distributor.pk,
                    role=self.distributor.role,
                    username=self.distributor.username,
                    name=self.distributor.name,
                    added_by=self.farmer.pk,
                    transfer_type=TransferType.TRANSFER,
                    can_edit_fields=[],
                )
        self.assertEqual(len(get_chain(self.product.pk)), 1)

    def test_get_chain_unknown_product(self):
        with self.assertRaises(ProductNotFound):
            get_chain(uuid.uuid4())
        with self.assertRaises(ProductNotFound):
            get_chain("not-a-uuid")


class ChainVerificationTests(TestCase):
    """verify_chain reports every broken block and never writes"""

    def setUp(self):
        self.farmer = TestDataFactory.create_participant(role=Participant.Role.FARMER)
        self.distributor = TestDataFactory.create_participant(role=Participant.Role.DISTRIBUTOR)
        self.retailer = TestDataFactory.create_participant(role=Participant.Role.RETAILER)
        self.product = TestDataFactory.create_product(owner=self.farmer)
        TestDataFactory.hand_over(self.product, self.distributor)
        TestDataFactory.hand_over(self.product, self.retailer)

    def test_untouched_chain_is_valid(self):
        self.assertEqual(verify_chain(self.product.pk), {"valid": True, "errors": []})

    def test_verify_is_idempotent(self):
        first = verify_chain(self.product.pk)
        second = verify_chain(self.product.pk)
        self.assertEqual(first, second)
        self.assertEqual(OwnershipBlock.objects.filter(product=self.product).count(), 3)

    def test_tampered_owner_breaks_the_rest_of_the_chain(self):
        # raw update skips the immutability signals
        OwnershipBlock.objects.filter(product=self.product, block_number=2).update(owner_id=uuid.uuid4())

        result = verify_chain(self.product.pk)
        self.assertFalse(result["valid"])
        self.assertEqual(
            result["errors"],
            [
                {"block_number": 2, "reason": HASH_MISMATCH},
                {"block_number": 3, "reason": BROKEN_LINK},
            ],
        )

    def test_tampered_stored_hash_is_a_mismatch(self):
        OwnershipBlock.objects.filter(product=self.product, block_number=1).update(ownership_hash="0" * 64)

        result = verify_chain(self.product.pk)
        self.assertEqual(result["errors"], [{"block_number": 1, "reason": HASH_MISMATCH}])

    def test_rewritten_link_is_broken(self):
        OwnershipBlock.objects.filter(product=self.product, block_number=3).update(previous_owner_hash="f" * 64)

        result = verify_chain(self.product.pk)
        self.assertEqual(result["errors"], [{"block_number": 3, "reason": BROKEN_LINK}])

    def test_product_without_blocks(self):
        bare = Product.objects.create(
            owner=self.farmer,
            batch_id="VEG-1999-999",
            qr_code="",
            **TestDataFactory.product_attributes(),
        )
        self.assertEqual(
            verify_chain(bare.pk),
            {"valid": False, "errors": [{"block_number": 1, "reason": MISSING_GENESIS}]},
        )

    def test_gap_in_numbering(self):
        chain = get_chain(self.product.pk)
        result = verify_blocks([chain[0], chain[2]])
        self.assertIn({"block_number": 3, "reason": OUT_OF_SEQUENCE}, result["errors"])
        self.assertIn({"block_number": 3, "reason": BROKEN_LINK}, result["errors"])


class BlockImmutabilityTests(TestCase):
    """Stored blocks cannot be changed or removed through the ORM"""

    def setUp(self):
        self.product = TestDataFactory.create_product()
        self.block = get_chain(self.product.pk)[0]

    def test_save_existing_block_is_refused(self):
        self.block.name = "Someone Else"
        with self.assertRaises(BlockImmutableError):
            self.block.save()
        self.block.refresh_from_db()
        self.assertNotEqual(self.block.name, "Someone Else")

    def test_delete_is_refused(self):
        with self.assertRaises(BlockImmutableError):
            self.block.delete()
        self.assertTrue(OwnershipBlock.objects.filter(pk=self.block.pk).exists())


class OwnerReconciliationTests(TestCase):
    """The owner projection is rolled forward to the chain head"""

    def setUp(self):
        self.farmer = TestDataFactory.create_participant(role=Participant.Role.FARMER)
        self.distributor = TestDataFactory.create_participant(role=Participant.Role.DISTRIBUTOR)
        self.product = TestDataFactory.create_product(owner=self.farmer)

    def _append_for(self, participant, added_by):
        return append_block(
            product_id=self.product.pk,
            owner_id=participant.pk,
            role=participant.role,
            username=participant.username,
            name=participant.name,
            added_by=added_by.pk,
            transfer_type=TransferType.TRANSFER,
            can_edit_fields=editable_fields_for_role(participant.role),
        )

    def test_consistent_products_are_not_reported(self):
        TestDataFactory.hand_over(self.product, self.distributor)
        self.assertEqual(find_owner_divergence(), [])
        self.assertFalse(reconcile_product_owner(self.product.pk))

    def test_interrupted_accept_is_completed(self):
        transfer = request_transfer(self.product.pk, self.farmer.pk, self.distributor.pk)
        block = self._append_for(self.distributor, self.farmer)

        diverged = find_owner_divergence()
        self.assertEqual(len(diverged), 1)
        self.assertEqual(diverged[0]["product_id"], self.product.pk)
        self.assertEqual(diverged[0]["head_owner_id"], self.distributor.pk)

        with self.assertLogs("ledger.services", level="WARNING"):
            self.assertTrue(reconcile_product_owner(self.product.pk))

        self.product.refresh_from_db()
        transfer.refresh_from_db()
        self.assertEqual(self.product.owner_id, self.distributor.pk)
        self.assertEqual(transfer.status, OwnershipTransfer.Status.COMPLETED)
        self.assertEqual(transfer.block_id, block.pk)
        self.assertIsNotNone(transfer.resolved_at)
        self.assertFalse(reconcile_product_owner(self.product.pk))

    def test_unknown_head_owner_is_left_alone(self):
        stranger = Participant(
            id=uuid.uuid4(), username="ghost", name="Ghost", role=Participant.Role.DISTRIBUTOR
        )
        self._append_for(stranger, self.farmer)

        with self.assertLogs("ledger.services", level="ERROR"):
            self.assertFalse(reconcile_product_owner(self.product.pk))
        self.product.refresh_from_db()
        self.assertEqual(self.product.owner_id, self.farmer.pk)


class LedgerCommandTests(TestCase):
    """ledger_verify / ledger_reconcile management commands"""

    def setUp(self):
        self.farmer = TestDataFactory.create_participant(role=Participant.Role.FARMER)
        self.distributor = TestDataFactory.create_participant(role=Participant.Role.DISTRIBUTOR)
        self.product = TestDataFactory.create_product(owner=self.farmer)
        self.other = TestDataFactory.create_product(owner=self.farmer)

    def test_verify_all_ok(self):
        out = StringIO()
        call_command("ledger_verify", stdout=out)
        self.assertIn("OK: 2 chains verified", out.getvalue())

    def test_verify_reports_broken_chain(self):
        OwnershipBlock.objects.filter(product=self.product).update(ownership_hash="0" * 64)
        out = StringIO()
        with self.assertRaises(SystemExit):
            call_command("ledger_verify", stdout=out)
        self.assertIn(f"FAIL {self.product.pk}", out.getvalue())

    def test_verify_single_product(self):
        OwnershipBlock.objects.filter(product=self.product).update(ownership_hash="0" * 64)
        out = StringIO()
        call_command("ledger_verify", "--product", str(self.other.pk), stdout=out)
        self.assertIn("OK: 1 chains verified", out.getvalue())

    def test_reconcile_dry_run_changes_nothing(self):
        append_block(
            product_id=self.product.pk,
            owner_id=self.distributor.pk,
            role=self.distributor.role,
            username=self.distributor.username,
            name=self.distributor.name,
            added_by=self.farmer.pk,
            transfer_type=TransferType.TRANSFER,
            can_edit_fields=[],
        )
        out = StringIO()
        call_command("ledger_reconcile", "--dry-run", stdout=out)
        self.assertIn("DIVERGED", out.getvalue())
        self.product.refresh_from_db()
        self.assertEqual(self.product.owner_id, self.farmer.pk)

        out = StringIO()
        call_command("ledger_reconcile", stdout=out)
        self.assertIn("FIXED", out.getvalue())
        self.product.refresh_from_db()
        self.assertEqual(self.product.owner_id, self.distributor.pk)


class LedgerSweepTaskTests(TestCase):
    """Celery sweeps run synchronously when called directly"""

    def setUp(self):
        self.farmer = TestDataFactory.create_participant(role=Participant.Role.FARMER)
        self.product = TestDataFactory.create_product(owner=self.farmer)
        TestDataFactory.create_product(owner=self.farmer)

    def test_verify_tick_counts_broken_chains(self):
        self.assertEqual(verify_chains_tick(), 0)

        OwnershipBlock.objects.filter(product=self.product).update(owner_id=uuid.uuid4())
        with self.assertLogs("ledger.celery_tasks", level="ERROR") as logs:
            self.assertEqual(verify_chains_tick(batch_size=1), 1)
        self.assertTrue(any(str(self.product.pk) in line for line in logs.output))

    def test_reconcile_tick(self):
        distributor = TestDataFactory.create_participant(role=Participant.Role.DISTRIBUTOR)
        append_block(
            product_id=self.product.pk,
            owner_id=distributor.pk,
            role=distributor.role,
            username=distributor.username,
            name=distributor.name,
            added_by=self.farmer.pk,
            transfer_type=TransferType.TRANSFER,
            can_edit_fields=[],
        )
        self.assertEqual(reconcile_owners_tick(), 1)
        self.assertEqual(reconcile_owners_tick(), 0)
