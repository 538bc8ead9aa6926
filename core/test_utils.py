"""
Test utilities and factories for creating test data
"""
from decimal import Decimal
import random
import string

from django.utils import timezone

from core.models import Participant
from core.services.products import register_product
from core.services.transfers import accept_transfer, request_transfer
from ledger.models import TransferType


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_lowercase + string.digits, k=length))

    @staticmethod
    def create_participant(role=Participant.Role.FARMER, username=None, name=None, email=None, is_active=True):
        """Create a test participant"""
        if not username:
            username = f'{role}_{TestDataFactory.random_string(6)}'
        if not email:
            email = f'{username}@test.com'
        return Participant.objects.create(
            username=username,
            name=name or username.replace('_', ' ').title(),
            email=email,
            role=role,
            is_active=is_active,
        )

    @staticmethod
    def product_attributes(**overrides):
        """Registration payload with sensible defaults"""
        attributes = {
            'name': 'Organic Tomatoes',
            'category': 'Vegetables',
            'description': 'Vine ripened',
            'quantity': Decimal('100.000'),
            'unit': 'kg',
            'farm_name': 'Green Valley Farm',
            'location': 'Salinas, CA',
            'harvest_date': timezone.now(),
            'certifications': ['organic'],
        }
        attributes.update(overrides)
        return attributes

    @staticmethod
    def create_product(owner=None, **overrides):
        """Register a product through the service, genesis block included"""
        if owner is None:
            owner = TestDataFactory.create_participant(role=Participant.Role.FARMER)
        return register_product(owner.pk, **TestDataFactory.product_attributes(**overrides))

    @staticmethod
    def hand_over(product, recipient, transfer_type=TransferType.TRANSFER):
        """Request and accept a transfer; returns (transfer, block)"""
        product.refresh_from_db()
        transfer = request_transfer(product.pk, product.owner_id, recipient.pk, transfer_type)
        block = accept_transfer(transfer.pk, recipient.pk)
        transfer.refresh_from_db()
        product.refresh_from_db()
        return transfer, block
