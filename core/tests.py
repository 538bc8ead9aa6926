"""
Comprehensive test suite for the transfer workflow
Tests: registration, request/accept/reject, ordering and authorization
errors, chain integrity gate, notifications, field capabilities, racing accepts,
quality checks, the scan log and the API
"""
import re
import threading
import uuid
from decimal import Decimal
from unittest import mock

from django.db import IntegrityError, connection, transaction
from django.test import TestCase, TransactionTestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from core.exceptions import (
    FieldNotEditable,
    ProductNotFound,
    InvalidTransferState,
    NotOwner,
    NotRecipient,
    TransferNotFound,
    UnknownRecipient,
)
from core.models import (
    Notification,
    OwnershipTransfer,
    Participant,
    Product,
    ProductEvent,
    QualityCheck,
    Scan,
    editable_fields_for_role,
)
from core.services.inspections import (
    quality_checks_for_product,
    recent_scans,
    record_quality_check,
    record_scan,
)
from core.services.notifications import notify, participant_group
from core.services.products import register_product, update_product_fields
from core.services.transfers import accept_transfer, reject_transfer, request_transfer, get_transfer
from core.test_utils import TestDataFactory
from ledger.exceptions import ChainIntegrityError
from ledger.models import OwnershipBlock, TransferType
from ledger.services import get_chain, verify_chain


class ProductRegistrationTests(TestCase):
    """register_product creates the product and its genesis block"""

    def setUp(self):
        self.farmer = TestDataFactory.create_participant(role=Participant.Role.FARMER)

    def test_register_assigns_batch_id_and_qr_code(self):
        product = TestDataFactory.create_product(owner=self.farmer, category="Vegetables")
        year = timezone.now().year
        self.assertRegex(product.batch_id, rf"^VEG-{year}-\d{{3}}$")
        self.assertIn(product.batch_id, product.qr_code)
        self.assertEqual(product.owner_id, self.farmer.pk)
        self.assertEqual(product.status, Product.Status.REGISTERED)

    def test_register_records_history_event(self):
        with self.captureOnCommitCallbacks(execute=True):
            product = TestDataFactory.create_product(owner=self.farmer)

        event = ProductEvent.objects.get(product=product)
        self.assertEqual(event.event_type, ProductEvent.EventType.OWNERSHIP_REGISTRATION)
        self.assertEqual(event.actor_id, self.farmer.pk)
        self.assertEqual(event.extra["block_number"], 1)
        self.assertEqual(event.extra["ownership_hash"], get_chain(product.pk)[0].ownership_hash)
        self.assertEqual(event.extra["fields"]["name"], "Organic Tomatoes")

    def test_consumer_cannot_register(self):
        consumer = TestDataFactory.create_participant(role=Participant.Role.CONSUMER)
        with self.assertRaises(ValidationError):
            TestDataFactory.create_product(owner=consumer)
        self.assertFalse(Product.objects.exists())

    def test_unknown_owner(self):
        with self.assertRaises(UnknownRecipient):
            register_product(uuid.uuid4(), **TestDataFactory.product_attributes())

    def test_batch_id_collision_is_retried(self):
        first = TestDataFactory.create_product(owner=self.farmer)
        with mock.patch("core.services.products._generate_batch_id", side_effect=[first.batch_id, "VEG-1999-777"]):
            second = TestDataFactory.create_product(owner=self.farmer)
        self.assertEqual(second.batch_id, "VEG-1999-777")


class TransferRequestTests(TestCase):
    """request_transfer opens a pending transfer for the current owner only"""

    def setUp(self):
        self.farmer = TestDataFactory.create_participant(role=Participant.Role.FARMER)
        self.distributor = TestDataFactory.create_participant(role=Participant.Role.DISTRIBUTOR)
        self.retailer = TestDataFactory.create_participant(role=Participant.Role.RETAILER)
        self.product = TestDataFactory.create_product(owner=self.farmer)

    def test_request_creates_pending_transfer_and_notifies(self):
        with self.captureOnCommitCallbacks(execute=True):
            transfer = request_transfer(
                self.product.pk, self.farmer.pk, self.distributor.pk, TransferType.DISTRIBUTION, "truck 7"
            )

        self.assertEqual(transfer.status, OwnershipTransfer.Status.PENDING)
        self.assertEqual(transfer.from_user_id, self.farmer.pk)
        self.assertEqual(transfer.transfer_type, TransferType.DISTRIBUTION)
        self.assertIsNone(transfer.block_id)

        notification = Notification.objects.get(recipient=self.distributor)
        self.assertEqual(notification.type, Notification.Type.TRANSFER_REQUEST)
        self.assertEqual(notification.product_id, self.product.pk)
        self.assertIn(self.product.batch_id, notification.message)

        # nothing reaches the chain until the recipient accepts
        self.assertEqual(len(get_chain(self.product.pk)), 1)

    def test_only_owner_can_request(self):
        with self.assertRaises(NotOwner):
            request_transfer(self.product.pk, self.distributor.pk, self.retailer.pk)
        self.assertFalse(OwnershipTransfer.objects.exists())

    def test_unknown_recipient(self):
        with self.assertRaises(UnknownRecipient):
            request_transfer(self.product.pk, self.farmer.pk, uuid.uuid4())

    def test_inactive_recipient(self):
        retired = TestDataFactory.create_participant(role=Participant.Role.RETAILER, is_active=False)
        with self.assertRaises(UnknownRecipient):
            request_transfer(self.product.pk, self.farmer.pk, retired.pk)

    def test_request_to_current_owner(self):
        with self.assertRaises(ValidationError):
            request_transfer(self.product.pk, self.farmer.pk, self.farmer.pk)

    def test_initial_type_cannot_be_requested(self):
        with self.assertRaises(ValidationError):
            request_transfer(self.product.pk, self.farmer.pk, self.distributor.pk, TransferType.INITIAL)

    def test_duplicate_pending_transfer(self):
        request_transfer(self.product.pk, self.farmer.pk, self.distributor.pk)
        with self.assertRaises(InvalidTransferState):
            request_transfer(self.product.pk, self.farmer.pk, self.distributor.pk)
        self.assertEqual(OwnershipTransfer.objects.count(), 1)

    def test_parallel_pending_to_different_recipients(self):
        request_transfer(self.product.pk, self.farmer.pk, self.distributor.pk)
        request_transfer(self.product.pk, self.farmer.pk, self.retailer.pk)
        self.assertEqual(OwnershipTransfer.objects.filter(status=OwnershipTransfer.Status.PENDING).count(), 2)

    def test_pending_uniqueness_is_enforced_by_the_database(self):
        OwnershipTransfer.objects.create(product=self.product, from_user=self.farmer, to_user=self.distributor)
        with self.assertRaises(IntegrityError), transaction.atomic():
            OwnershipTransfer.objects.create(product=self.product, from_user=self.farmer, to_user=self.distributor)


class TransferAcceptTests(TestCase):
    """accept_transfer appends a block and moves custody in one transaction"""

    def setUp(self):
        self.farmer = TestDataFactory.create_participant(role=Participant.Role.FARMER)
        self.distributor = TestDataFactory.create_participant(role=Participant.Role.DISTRIBUTOR)
        self.retailer = TestDataFactory.create_participant(role=Participant.Role.RETAILER)
        self.product = TestDataFactory.create_product(owner=self.farmer)
        self.transfer = request_transfer(self.product.pk, self.farmer.pk, self.distributor.pk)

    def test_accept_moves_custody(self):
        genesis = get_chain(self.product.pk)[0]
        with self.captureOnCommitCallbacks(execute=True):
            block = accept_transfer(self.transfer.pk, self.distributor.pk)

        self.assertEqual(block.block_number, 2)
        self.assertEqual(block.previous_owner_hash, genesis.ownership_hash)
        self.assertEqual(block.owner_id, self.distributor.pk)
        self.assertEqual(block.added_by, self.farmer.pk)
        self.assertEqual(block.username, self.distributor.username)

        self.product.refresh_from_db()
        self.assertEqual(self.product.owner_id, self.distributor.pk)
        self.assertEqual(self.product.status, Product.Status.IN_TRANSIT)

        self.transfer.refresh_from_db()
        self.assertEqual(self.transfer.status, OwnershipTransfer.Status.COMPLETED)
        self.assertEqual(self.transfer.block_id, block.pk)
        self.assertIsNotNone(self.transfer.resolved_at)

        notification = Notification.objects.get(recipient=self.farmer)
        self.assertEqual(notification.type, Notification.Type.TRANSFER_ACCEPTED)

        event = ProductEvent.objects.get(product=self.product, event_type=ProductEvent.EventType.OWNERSHIP_TRANSFER)
        self.assertEqual(event.actor_id, self.distributor.pk)
        self.assertEqual(event.extra["block_number"], 2)
        self.assertEqual(event.extra["from_user_id"], str(self.farmer.pk))

        self.assertEqual(verify_chain(self.product.pk), {"valid": True, "errors": []})

    def test_only_recipient_can_accept(self):
        with self.assertRaises(NotRecipient):
            accept_transfer(self.transfer.pk, self.farmer.pk)
        with self.assertRaises(NotRecipient):
            accept_transfer(self.transfer.pk, self.retailer.pk)
        self.assertEqual(len(get_chain(self.product.pk)), 1)

    def test_second_accept_is_refused(self):
        accept_transfer(self.transfer.pk, self.distributor.pk)
        with self.assertRaises(InvalidTransferState):
            accept_transfer(self.transfer.pk, self.distributor.pk)
        self.assertEqual(len(get_chain(self.product.pk)), 2)

    def test_stale_transfer_is_refused(self):
        competing = request_transfer(self.product.pk, self.farmer.pk, self.retailer.pk)
        accept_transfer(self.transfer.pk, self.distributor.pk)

        with self.assertRaises(InvalidTransferState):
            accept_transfer(competing.pk, self.retailer.pk)

        self.product.refresh_from_db()
        self.assertEqual(self.product.owner_id, self.distributor.pk)
        self.assertEqual(len(get_chain(self.product.pk)), 2)
        competing.refresh_from_db()
        self.assertEqual(competing.status, OwnershipTransfer.Status.PENDING)

    def test_broken_chain_blocks_accept(self):
        OwnershipBlock.objects.filter(product=self.product, block_number=1).update(owner_id=uuid.uuid4())

        with self.assertLogs("core.services.transfers", level="ERROR") as logs:
            with self.assertRaises(ChainIntegrityError) as ctx:
                accept_transfer(self.transfer.pk, self.distributor.pk)

        self.assertIn("CHAIN INTEGRITY", logs.output[0])
        self.assertEqual(ctx.exception.errors, [{"block_number": 1, "reason": "hash-mismatch"}])
        self.transfer.refresh_from_db()
        self.assertEqual(self.transfer.status, OwnershipTransfer.Status.PENDING)
        self.product.refresh_from_db()
        self.assertEqual(self.product.owner_id, self.farmer.pk)
        self.assertEqual(OwnershipBlock.objects.filter(product=self.product).count(), 1)

    def test_unknown_transfer(self):
        with self.assertRaises(TransferNotFound):
            accept_transfer(987654, self.distributor.pk)
        with self.assertRaises(TransferNotFound):
            get_transfer("abc")


class TransferRejectTests(TestCase):
    """reject_transfer closes the request without touching the chain"""

    def setUp(self):
        self.farmer = TestDataFactory.create_participant(role=Participant.Role.FARMER)
        self.distributor = TestDataFactory.create_participant(role=Participant.Role.DISTRIBUTOR)
        self.product = TestDataFactory.create_product(owner=self.farmer)
        self.transfer = request_transfer(self.product.pk, self.farmer.pk, self.distributor.pk)

    def test_reject(self):
        with self.captureOnCommitCallbacks(execute=True):
            transfer = reject_transfer(self.transfer.pk, self.distributor.pk)

        self.assertEqual(transfer.status, OwnershipTransfer.Status.REJECTED)
        self.assertIsNotNone(transfer.resolved_at)
        self.product.refresh_from_db()
        self.assertEqual(self.product.owner_id, self.farmer.pk)
        self.assertEqual(len(get_chain(self.product.pk)), 1)
        self.assertEqual(
            Notification.objects.get(recipient=self.farmer).type,
            Notification.Type.TRANSFER_REJECTED,
        )

    def test_only_recipient_can_reject(self):
        with self.assertRaises(NotRecipient):
            reject_transfer(self.transfer.pk, self.farmer.pk)

    def test_rejected_transfer_is_final(self):
        reject_transfer(self.transfer.pk, self.distributor.pk)
        with self.assertRaises(InvalidTransferState):
            accept_transfer(self.transfer.pk, self.distributor.pk)
        with self.assertRaises(InvalidTransferState):
            reject_transfer(self.transfer.pk, self.distributor.pk)

    def test_new_request_after_reject(self):
        reject_transfer(self.transfer.pk, self.distributor.pk)
        again = request_transfer(self.product.pk, self.farmer.pk, self.distributor.pk)
        self.assertEqual(again.status, OwnershipTransfer.Status.PENDING)


class SupplyChainLifecycleTests(TestCase):
    """Farm to consumer, one block per hand-over"""

    def test_full_lifecycle(self):
        farmer = TestDataFactory.create_participant(role=Participant.Role.FARMER)
        distributor = TestDataFactory.create_participant(role=Participant.Role.DISTRIBUTOR)
        retailer = TestDataFactory.create_participant(role=Participant.Role.RETAILER)
        consumer = TestDataFactory.create_participant(role=Participant.Role.CONSUMER)
        product = TestDataFactory.create_product(owner=farmer)

        TestDataFactory.hand_over(product, distributor, TransferType.DISTRIBUTION)
        TestDataFactory.hand_over(product, retailer, TransferType.DISTRIBUTION)
        TestDataFactory.hand_over(product, consumer, TransferType.SALE)

        chain = get_chain(product.pk)
        self.assertEqual([b.block_number for b in chain], [1, 2, 3, 4])
        self.assertEqual(
            [b.owner_id for b in chain],
            [farmer.pk, distributor.pk, retailer.pk, consumer.pk],
        )
        self.assertEqual([b.added_by for b in chain], [farmer.pk, farmer.pk, distributor.pk, retailer.pk])
        for prev, block in zip(chain, chain[1:]):
            self.assertEqual(block.previous_owner_hash, prev.ownership_hash)
        self.assertEqual(chain[-1].can_edit_fields, [])
        self.assertTrue(verify_chain(product.pk)["valid"])

        product.refresh_from_db()
        self.assertEqual(product.owner_id, consumer.pk)
        self.assertEqual(product.status, Product.Status.SOLD)

    def test_product_can_return_to_a_previous_owner(self):
        farmer = TestDataFactory.create_participant(role=Participant.Role.FARMER)
        distributor = TestDataFactory.create_participant(role=Participant.Role.DISTRIBUTOR)
        product = TestDataFactory.create_product(owner=farmer)

        TestDataFactory.hand_over(product, distributor)
        _, block = TestDataFactory.hand_over(product, farmer, TransferType.RETURN)

        self.assertEqual(block.block_number, 3)
        self.assertEqual(block.transfer_type, TransferType.RETURN)
        self.assertEqual(product.status, Product.Status.REGISTERED)
        self.assertTrue(verify_chain(product.pk)["valid"])


class ProductFieldUpdateTests(TestCase):
    """Only the owner edits, and only within the head block's capabilities"""

    def setUp(self):
        self.farmer = TestDataFactory.create_participant(role=Participant.Role.FARMER)
        self.distributor = TestDataFactory.create_participant(role=Participant.Role.DISTRIBUTOR)
        self.product = TestDataFactory.create_product(owner=self.farmer)

    def test_farmer_edits_own_fields(self):
        with self.captureOnCommitCallbacks(execute=True):
            product = update_product_fields(self.product.pk, self.farmer.pk, {"description": "Heirloom"})

        self.assertEqual(product.description, "Heirloom")
        event = ProductEvent.objects.get(product=self.product, event_type=ProductEvent.EventType.FIELD_UPDATE)
        self.assertEqual(event.extra, {"before": {"description": "Vine ripened"}, "after": {"description": "Heirloom"}})

    def test_distributor_capabilities_follow_the_chain(self):
        TestDataFactory.hand_over(self.product, self.distributor)

        product = update_product_fields(
            self.product.pk, self.distributor.pk, {"warehouse_location": "Dock 4", "quantity": Decimal("95.5")}
        )
        self.assertEqual(product.warehouse_location, "Dock 4")

        with self.assertRaises(FieldNotEditable):
            update_product_fields(self.product.pk, self.distributor.pk, {"name": "Cherry Tomatoes"})

    def test_previous_owner_cannot_edit(self):
        TestDataFactory.hand_over(self.product, self.distributor)
        with self.assertRaises(NotOwner):
            update_product_fields(self.product.pk, self.farmer.pk, {"description": "mine"})

    def test_consumer_has_no_capabilities(self):
        consumer = TestDataFactory.create_participant(role=Participant.Role.CONSUMER)
        TestDataFactory.hand_over(self.product, consumer, TransferType.SALE)
        with self.assertRaises(FieldNotEditable):
            update_product_fields(self.product.pk, consumer.pk, {"description": "eaten"})

    def test_empty_changes(self):
        with self.assertRaises(ValidationError):
            update_product_fields(self.product.pk, self.farmer.pk, {})

    def test_role_capabilities(self):
        self.assertIn("harvest_date", editable_fields_for_role(Participant.Role.FARMER))
        self.assertIn("dispatch_date", editable_fields_for_role(Participant.Role.DISTRIBUTOR))
        self.assertIn("price", editable_fields_for_role(Participant.Role.RETAILER))
        self.assertEqual(editable_fields_for_role(Participant.Role.CONSUMER), [])
        self.assertEqual(editable_fields_for_role("auditor"), [])


class NotificationSinkTests(TestCase):
    """notify stores the row and pushes it, and never raises"""

    def setUp(self):
        self.farmer = TestDataFactory.create_participant(role=Participant.Role.FARMER)

    def test_push_failure_is_logged(self):
        with mock.patch("core.services.notifications.get_channel_layer", side_effect=RuntimeError("redis down")):
            with self.assertLogs("core.services.notifications", level="ERROR"):
                notification = notify(self.farmer.pk, "Hello", "World")
        self.assertIsNotNone(notification)
        self.assertTrue(Notification.objects.filter(recipient=self.farmer, title="Hello").exists())

    def test_push_goes_to_participant_group(self):
        layer = mock.Mock()
        layer.group_send = mock.AsyncMock()
        with mock.patch("core.services.notifications.get_channel_layer", return_value=layer):
            notification = notify(self.farmer.pk, "Hello", "World")

        group, event = layer.group_send.await_args.args
        self.assertEqual(group, f"participant_{self.farmer.pk}")
        self.assertEqual(group, participant_group(self.farmer.pk))
        self.assertEqual(event["type"], "notification.created")
        self.assertEqual(event["message"]["id"], notification.id)


class LedgerAPITests(TestCase):
    """HTTP surface: status codes and payload shapes"""

    def setUp(self):
        self.client = APIClient()
        self.farmer = TestDataFactory.create_participant(role=Participant.Role.FARMER)
        self.distributor = TestDataFactory.create_participant(role=Participant.Role.DISTRIBUTOR)
        self.retailer = TestDataFactory.create_participant(role=Participant.Role.RETAILER)
        self.product = TestDataFactory.create_product(owner=self.farmer)

    def _request(self, to_user=None, **extra):
        payload = {
            "product_id": str(self.product.pk),
            "from_user_id": str(self.farmer.pk),
            "to_user_id": str((to_user or self.distributor).pk),
            "transfer_type": "distribution",
        }
        payload.update(extra)
        return self.client.post("/api/transfers/request/", payload)

    def test_register_product(self):
        response = self.client.post("/api/products/", {
            "owner_id": str(self.farmer.pk),
            "name": "Honeycrisp Apples",
            "category": "Fruit",
            "quantity": "250",
            "unit": "kg",
            "farm_name": "Orchard Hill",
            "location": "Wenatchee, WA",
            "harvest_date": timezone.now().isoformat(),
            "certifications": ["gap"],
        })
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(re.match(r"^FRU-\d{4}-\d{3}$", response.data["batch_id"]))
        self.assertEqual(response.data["owner"]["id"], str(self.farmer.pk))
        self.assertEqual(len(get_chain(response.data["id"])), 1)

    def test_register_rejects_bad_quantity(self):
        response = self.client.post("/api/products/", {
            "owner_id": str(self.farmer.pk),
            "name": "Nothing",
            "category": "Fruit",
            "quantity": "0",
            "unit": "kg",
            "farm_name": "Orchard Hill",
            "location": "Wenatchee, WA",
            "harvest_date": timezone.now().isoformat(),
        })
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_chain_and_verify(self):
        response = self.client.get(f"/api/products/{self.product.pk}/chain/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["block_number"], 1)
        self.assertIsNone(response.data[0]["previous_owner_hash"])

        response = self.client.get(f"/api/products/{self.product.pk}/verify/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json(), {"valid": True, "errors": []})

    def test_chain_of_unknown_product(self):
        response = self.client.get(f"/api/products/{uuid.uuid4()}/chain/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_request_and_accept(self):
        response = self._request(notes="cold chain")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["status"], "pending")
        transfer_id = response.data["transfer_id"]

        response = self.client.post(
            f"/api/transfers/{transfer_id}/accept/", {"acting_user_id": str(self.distributor.pk)}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["block_number"], 2)
        self.assertEqual(response.data["previous_owner_hash"], get_chain(self.product.pk)[0].ownership_hash)

        response = self.client.post(
            f"/api/transfers/{transfer_id}/accept/", {"acting_user_id": str(self.distributor.pk)}
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

        response = self.client.get(f"/api/transfers/{transfer_id}/")
        self.assertEqual(response.data["status"], "completed")
        self.assertEqual(response.data["block_number"], 2)

    def test_request_error_codes(self):
        self.assertEqual(
            self._request(from_user_id=str(self.distributor.pk), to_user=self.retailer).status_code,
            status.HTTP_403_FORBIDDEN,
        )
        self.assertEqual(
            self._request(to_user_id=str(uuid.uuid4())).status_code,
            status.HTTP_404_NOT_FOUND,
        )
        self.assertEqual(
            self._request(transfer_type="initial").status_code,
            status.HTTP_400_BAD_REQUEST,
        )
        self.assertEqual(
            self._request(to_user=self.farmer).status_code,
            status.HTTP_400_BAD_REQUEST,
        )
        self.assertEqual(self._request().status_code, status.HTTP_201_CREATED)
        self.assertEqual(self._request().status_code, status.HTTP_409_CONFLICT)

    def test_accept_by_wrong_participant(self):
        transfer_id = self._request().data["transfer_id"]
        response = self.client.post(
            f"/api/transfers/{transfer_id}/accept/", {"acting_user_id": str(self.retailer.pk)}
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_accept_unknown_transfer(self):
        response = self.client.post("/api/transfers/424242/accept/", {"acting_user_id": str(self.distributor.pk)})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_accept_on_broken_chain(self):
        transfer_id = self._request().data["transfer_id"]
        OwnershipBlock.objects.filter(product=self.product).update(ownership_hash="0" * 64)

        with self.assertLogs("core.services.transfers", level="ERROR"):
            response = self.client.post(
                f"/api/transfers/{transfer_id}/accept/", {"acting_user_id": str(self.distributor.pk)}
            )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

        response = self.client.get(f"/api/products/{self.product.pk}/verify/")
        self.assertEqual(response.json(), {"valid": False, "errors": [{"block_number": 1, "reason": "hash-mismatch"}]})

    def test_accept_write_failure_is_retryable(self):
        transfer_id = self._request().data["transfer_id"]
        with mock.patch.object(OwnershipBlock.objects, "create", side_effect=IntegrityError("duplicate")):
            response = self.client.post(
                f"/api/transfers/{transfer_id}/accept/", {"acting_user_id": str(self.distributor.pk)}
            )
        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)

        response = self.client.post(
            f"/api/transfers/{transfer_id}/accept/", {"acting_user_id": str(self.distributor.pk)}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["block_number"], 2)

    def test_reject(self):
        transfer_id = self._request().data["transfer_id"]
        response = self.client.post(
            f"/api/transfers/{transfer_id}/reject/", {"acting_user_id": str(self.distributor.pk)}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {"status": "rejected"})

    def test_transfer_list_filters(self):
        self._request()
        rejected_id = self._request(to_user=self.retailer).data["transfer_id"]
        reject_transfer(rejected_id, self.retailer.pk)

        response = self.client.get("/api/transfers/", {"status": "pending"})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["to_user"]["id"], str(self.distributor.pk))

        response = self.client.get("/api/transfers/", {"product": str(self.product.pk)})
        self.assertEqual(len(response.data), 2)

    def test_batch_lookup(self):
        response = self.client.get(f"/api/products/batch/{self.product.batch_id}/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["id"], str(self.product.pk))

        response = self.client.get("/api/products/batch/XXX-0000-000/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_update_fields(self):
        url = f"/api/products/{self.product.pk}/update_fields/"
        response = self.client.post(url, {"acting_user_id": str(self.farmer.pk), "changes": {"unit": "lb"}})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["unit"], "lb")

        response = self.client.post(url, {"acting_user_id": str(self.farmer.pk), "changes": {"price": "3.50"}})
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        response = self.client.post(url, {"acting_user_id": str(self.distributor.pk), "changes": {"unit": "g"}})
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        response = self.client.post(url, {"acting_user_id": str(self.farmer.pk), "changes": {"owner": "x"}})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_events(self):
        with self.captureOnCommitCallbacks(execute=True):
            update_product_fields(self.product.pk, self.farmer.pk, {"unit": "lb"})
        response = self.client.get(f"/api/products/{self.product.pk}/events/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([e["event_type"] for e in response.data], ["field_update"])

    def test_participant_notifications(self):
        with self.captureOnCommitCallbacks(execute=True):
            transfer_id = self._request().data["transfer_id"]

        response = self.client.get(f"/api/participants/{self.distributor.pk}/notifications/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["type"], "transfer_request")

        notification_id = response.data[0]["id"]
        response = self.client.post(f"/api/notifications/{notification_id}/read/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["is_read"])

        response = self.client.get(f"/api/participants/{self.distributor.pk}/notifications/", {"unread": "1"})
        self.assertEqual(response.data, [])
        self.assertTrue(OwnershipTransfer.objects.filter(pk=transfer_id).exists())


class ConcurrentAcceptTests(TransactionTestCase):
    """Two recipients' clients racing on the same accept, on real connections"""

    def setUp(self):
        self.farmer = TestDataFactory.create_participant(role=Participant.Role.FARMER)
        self.distributor = TestDataFactory.create_participant(role=Participant.Role.DISTRIBUTOR)
        self.product = TestDataFactory.create_product(owner=self.farmer)
        self.transfer = request_transfer(self.product.pk, self.farmer.pk, self.distributor.pk)

    def test_only_one_of_two_racing_accepts_wins(self):
        barrier = threading.Barrier(2)
        outcomes = []
        outcomes_lock = threading.Lock()

        def worker():
            try:
                barrier.wait()
                block = accept_transfer(self.transfer.pk, self.distributor.pk)
                outcome = ("ok", block.block_number)
            except InvalidTransferState:
                outcome = ("InvalidTransferState", None)
            except Exception as exc:
                outcome = (type(exc).__name__, None)
            finally:
                connection.close()
            with outcomes_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        self.assertEqual(sorted(outcomes, key=str), [("InvalidTransferState", None), ("ok", 2)])
        self.assertEqual(OwnershipBlock.objects.filter(product=self.product).count(), 2)
        self.assertTrue(verify_chain(self.product.pk)["valid"])

        self.product.refresh_from_db()
        self.transfer.refresh_from_db()
        self.assertEqual(self.product.owner_id, self.distributor.pk)
        self.assertEqual(self.transfer.status, OwnershipTransfer.Status.COMPLETED)


class QualityCheckTests(TestCase):
    """Inspection results recorded against registered products"""

    def setUp(self):
        self.farmer = TestDataFactory.create_participant(role=Participant.Role.FARMER)
        self.inspector = TestDataFactory.create_participant(role=Participant.Role.DISTRIBUTOR)
        self.product = TestDataFactory.create_product(owner=self.farmer)

    def test_record_quality_check(self):
        with self.assertLogs("core.services.inspections", level="INFO") as logs:
            check = record_quality_check(
                self.product.pk, self.inspector.pk, "pesticide_residue", Decimal("92.50"),
                notes="Below limits", certification_url="https://certs.example.org/92",
            )
        self.assertTrue(check.verified)
        self.assertEqual(check.product_id, self.product.pk)
        self.assertEqual(check.inspector_id, self.inspector.pk)
        self.assertEqual(check.score, Decimal("92.50"))
        self.assertIn("quality check", logs.output[0])

    def test_unknown_product(self):
        with self.assertRaises(ProductNotFound):
            record_quality_check(uuid.uuid4(), self.inspector.pk, "visual", Decimal("80"))
        self.assertFalse(QualityCheck.objects.exists())

    def test_unknown_or_inactive_inspector(self):
        inactive = TestDataFactory.create_participant(role=Participant.Role.RETAILER, is_active=False)
        with self.assertRaises(UnknownRecipient):
            record_quality_check(self.product.pk, inactive.pk, "visual", Decimal("80"))
        with self.assertRaises(UnknownRecipient):
            record_quality_check(self.product.pk, uuid.uuid4(), "visual", Decimal("80"))
        self.assertFalse(QualityCheck.objects.exists())

    def test_checks_listed_newest_first(self):
        first = record_quality_check(self.product.pk, self.inspector.pk, "visual", Decimal("70"))
        second = record_quality_check(self.product.pk, self.inspector.pk, "moisture", Decimal("88"))
        other = TestDataFactory.create_product(owner=self.farmer)
        record_quality_check(other.pk, self.inspector.pk, "visual", Decimal("50"))

        checks = list(quality_checks_for_product(self.product.pk))
        self.assertEqual([c.pk for c in checks], [second.pk, first.pk])

    def test_listing_unknown_product(self):
        with self.assertRaises(ProductNotFound):
            quality_checks_for_product(uuid.uuid4())


class ScanTests(TestCase):
    """Scan log: who looked at which product and where"""

    def setUp(self):
        self.farmer = TestDataFactory.create_participant(role=Participant.Role.FARMER)
        self.consumer = TestDataFactory.create_participant(role=Participant.Role.CONSUMER)
        self.product = TestDataFactory.create_product(owner=self.farmer)

    def test_anonymous_scan(self):
        scan = record_scan(self.product.pk, location="Market stall 4")
        self.assertIsNone(scan.participant_id)
        self.assertIsNone(scan.coordinates)
        self.assertEqual(scan.location, "Market stall 4")

    def test_participant_scan_with_coordinates(self):
        scan = record_scan(self.product.pk, self.consumer.pk, "Aisle 3", {"lat": 36.67, "lng": -121.65})
        self.assertEqual(scan.participant_id, self.consumer.pk)
        self.assertEqual(Scan.objects.get(pk=scan.pk).coordinates, {"lat": 36.67, "lng": -121.65})

    def test_scan_of_unknown_product(self):
        with self.assertRaises(ProductNotFound):
            record_scan(uuid.uuid4(), self.consumer.pk)
        self.assertFalse(Scan.objects.exists())

    def test_recent_scans_filtered_by_participant(self):
        mine = [record_scan(self.product.pk, self.consumer.pk) for _ in range(3)]
        record_scan(self.product.pk, self.farmer.pk)
        record_scan(self.product.pk)

        scans = recent_scans(participant_id=self.consumer.pk)
        self.assertEqual([s.pk for s in scans], [s.pk for s in reversed(mine)])
        self.assertEqual(len(recent_scans()), 5)
        self.assertEqual([s.pk for s in recent_scans(self.consumer.pk, limit=2)], [mine[2].pk, mine[1].pk])

    def test_recent_scans_limit_is_clamped(self):
        for _ in range(12):
            record_scan(self.product.pk)
        self.assertEqual(len(recent_scans(limit="abc")), 10)
        self.assertEqual(len(recent_scans(limit=0)), 10)
        self.assertEqual(len(recent_scans(limit=500)), 12)
        with mock.patch("core.services.inspections.RECENT_SCANS_MAX", 5):
            self.assertEqual(len(recent_scans(limit=500)), 5)


class InspectionAPITests(TestCase):
    """Quality check and scan endpoints"""

    def setUp(self):
        self.client = APIClient()
        self.farmer = TestDataFactory.create_participant(role=Participant.Role.FARMER)
        self.inspector = TestDataFactory.create_participant(role=Participant.Role.DISTRIBUTOR)
        self.consumer = TestDataFactory.create_participant(role=Participant.Role.CONSUMER)
        self.product = TestDataFactory.create_product(owner=self.farmer)

    def test_create_and_list_quality_checks(self):
        response = self.client.post("/api/quality_checks/", {
            "product_id": str(self.product.pk),
            "inspector_id": str(self.inspector.pk),
            "check_type": "pesticide_residue",
            "score": "92.50",
            "notes": "Below limits",
        })
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data["verified"])
        self.assertEqual(response.data["score"], "92.50")
        self.assertEqual(response.data["inspector"]["username"], self.inspector.username)

        response = self.client.get(f"/api/products/{self.product.pk}/quality_checks/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["check_type"], "pesticide_residue")

    def test_quality_check_validation(self):
        payload = {
            "product_id": str(self.product.pk),
            "inspector_id": str(self.inspector.pk),
            "check_type": "visual",
            "score": "150",
        }
        response = self.client.post("/api/quality_checks/", payload)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("score", response.data)

        payload.update(score="80", product_id=str(uuid.uuid4()))
        response = self.client.post("/api/quality_checks/", payload)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertFalse(QualityCheck.objects.exists())

    def test_quality_checks_of_unknown_product(self):
        response = self.client.get(f"/api/products/{uuid.uuid4()}/quality_checks/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_create_scan(self):
        response = self.client.post("/api/scans/", {
            "product_id": str(self.product.pk),
            "participant_id": str(self.consumer.pk),
            "location": "Aisle 3",
            "coordinates": {"lat": 36.67, "lng": -121.65},
        })
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["product"]["batch_id"], self.product.batch_id)
        self.assertEqual(response.data["coordinates"], {"lat": 36.67, "lng": -121.65})

        response = self.client.post("/api/scans/", {"product_id": str(self.product.pk)})
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertIsNone(response.data["participant"])

    def test_scan_with_bad_coordinates(self):
        response = self.client.post("/api/scans/", {
            "product_id": str(self.product.pk),
            "coordinates": {"lat": 120, "lng": 0},
        })
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Scan.objects.exists())

    def test_recent_scans(self):
        record_scan(self.product.pk, self.consumer.pk, "Aisle 3")
        record_scan(self.product.pk, self.inspector.pk, "Dock 1")
        record_scan(self.product.pk, self.consumer.pk, "Checkout")

        response = self.client.get("/api/scans/recent/", {"participant_id": str(self.consumer.pk), "limit": "1"})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["location"], "Checkout")
        self.assertEqual(response.data[0]["product"]["batch_id"], self.product.batch_id)

        response = self.client.get("/api/scans/recent/")
        self.assertEqual([s["location"] for s in response.data], ["Checkout", "Dock 1", "Aisle 3"])
