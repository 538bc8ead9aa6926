from decimal import Decimal

from rest_framework import serializers

from core.models import (
    Notification,
    OwnershipTransfer,
    Participant,
    Product,
    ProductEvent,
    QualityCheck,
    Scan,
)
from ledger.models import OwnershipBlock, TransferType


# === Participants ===

class ParticipantShortSerializer(serializers.ModelSerializer):
    class Meta:
        model = Participant
        fields = ["id", "username", "name", "role"]


class ParticipantSerializer(serializers.ModelSerializer):
    class Meta:
        model = Participant
        fields = ["id", "username", "name", "email", "role", "is_active", "created_at"]
        read_only_fields = ["id", "created_at"]


# === Products ===

class ProductReadSerializer(serializers.ModelSerializer):
    owner = ParticipantShortSerializer(read_only=True)

    class Meta:
        model = Product
        fields = [
            "id",
            "batch_id",
            "qr_code",
            "name",
            "category",
            "description",
            "quantity",
            "unit",
            "farm_name",
            "location",
            "harvest_date",
            "certifications",
            "owner",
            "status",
            "distributor_name",
            "warehouse_location",
            "dispatch_date",
            "price",
            "payment_proof_url",
            "store_name",
            "store_location",
            "arrival_date",
            "created_at",
            "updated_at",
        ]


class ProductRegisterSerializer(serializers.ModelSerializer):
    # batch_id, qr_code and the genesis block are produced by the service
    owner_id = serializers.UUIDField(write_only=True)
    certifications = serializers.ListField(
        child=serializers.CharField(max_length=100), required=False, default=list
    )

    class Meta:
        model = Product
        fields = [
            "owner_id",
            "name",
            "category",
            "description",
            "quantity",
            "unit",
            "farm_name",
            "location",
            "harvest_date",
            "certifications",
        ]

    def validate_quantity(self, value):
        if value <= 0:
            raise serializers.ValidationError("Quantity must be positive.")
        return value


class ProductFieldsSerializer(serializers.ModelSerializer):
    """Every product attribute a custodian can possibly edit; all optional."""
    certifications = serializers.ListField(child=serializers.CharField(max_length=100), required=False)

    class Meta:
        model = Product
        fields = [
            "name",
            "category",
            "description",
            "quantity",
            "unit",
            "farm_name",
            "location",
            "harvest_date",
            "certifications",
            "distributor_name",
            "warehouse_location",
            "dispatch_date",
            "price",
            "payment_proof_url",
            "store_name",
            "store_location",
            "arrival_date",
        ]
        extra_kwargs = {field: {"required": False} for field in fields}


class ProductUpdateFieldsSerializer(serializers.Serializer):
    acting_user_id = serializers.UUIDField()
    changes = serializers.DictField()

    def validate_changes(self, changes):
        unknown = sorted(set(changes) - set(ProductFieldsSerializer.Meta.fields))
        if unknown:
            raise serializers.ValidationError(f"Unknown product fields: {', '.join(unknown)}")
        inner = ProductFieldsSerializer(data=changes, partial=True)
        inner.is_valid(raise_exception=True)
        return dict(inner.validated_data)


class ProductEventSerializer(serializers.ModelSerializer):
    actor = ParticipantShortSerializer(read_only=True)

    class Meta:
        model = ProductEvent
        fields = ["id", "event_type", "actor", "message", "extra", "created_at"]
        read_only_fields = fields


# === Ledger ===

class OwnershipBlockSerializer(serializers.ModelSerializer):
    product_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = OwnershipBlock
        fields = [
            "product_id",
            "block_number",
            "owner_id",
            "role",
            "username",
            "name",
            "added_by",
            "can_edit_fields",
            "transfer_type",
            "previous_owner_hash",
            "ownership_hash",
            "created_at",
        ]
        read_only_fields = fields  # blocks are created by ledger.services only


class ChainErrorSerializer(serializers.Serializer):
    block_number = serializers.IntegerField()
    reason = serializers.CharField()


class ChainVerificationSerializer(serializers.Serializer):
    valid = serializers.BooleanField()
    errors = ChainErrorSerializer(many=True)


class AcceptedBlockSerializer(serializers.ModelSerializer):
    class Meta:
        model = OwnershipBlock
        fields = ["block_number", "ownership_hash", "previous_owner_hash"]
        read_only_fields = fields


# === Transfers ===

class TransferRequestSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    from_user_id = serializers.UUIDField()
    to_user_id = serializers.UUIDField()
    transfer_type = serializers.ChoiceField(
        choices=[c for c in TransferType.choices if c[0] != TransferType.INITIAL],
        default=TransferType.TRANSFER,
    )
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, data):
        if data["from_user_id"] == data["to_user_id"]:
            raise serializers.ValidationError({"to_user_id": "Cannot transfer a product to yourself."})
        return data


class TransferActionSerializer(serializers.Serializer):
    acting_user_id = serializers.UUIDField()


class TransferReadSerializer(serializers.ModelSerializer):
    from_user = ParticipantShortSerializer(read_only=True)
    to_user = ParticipantShortSerializer(read_only=True)
    product_batch_id = serializers.CharField(source="product.batch_id", read_only=True)
    block_number = serializers.IntegerField(source="block.block_number", read_only=True, default=None)

    class Meta:
        model = OwnershipTransfer
        fields = [
            "id",
            "product",
            "product_batch_id",
            "from_user",
            "to_user",
            "transfer_type",
            "status",
            "notes",
            "block_number",
            "created_at",
            "updated_at",
            "resolved_at",
        ]
        read_only_fields = fields


# === Notifications ===

class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = ["id", "recipient", "title", "message", "type", "product", "is_read", "created_at"]
        read_only_fields = fields


# === Quality checks & scans ===

class ProductShortSerializer(serializers.ModelSerializer):
    class Meta:
        model = Product
        fields = ["id", "batch_id", "name", "category", "status"]


class QualityCheckSerializer(serializers.ModelSerializer):
    inspector = ParticipantShortSerializer(read_only=True)

    class Meta:
        model = QualityCheck
        fields = [
            "id",
            "product",
            "inspector",
            "check_type",
            "score",
            "notes",
            "certification_url",
            "verified",
            "created_at",
        ]
        read_only_fields = fields


class QualityCheckCreateSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    inspector_id = serializers.UUIDField()
    check_type = serializers.CharField(max_length=100)
    score = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=Decimal("0"), max_value=Decimal("100")
    )
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    certification_url = serializers.URLField(required=False, allow_blank=True, max_length=500, default="")


class CoordinatesSerializer(serializers.Serializer):
    lat = serializers.FloatField(min_value=-90, max_value=90)
    lng = serializers.FloatField(min_value=-180, max_value=180)


class ScanCreateSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    participant_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    location = serializers.CharField(required=False, allow_blank=True, max_length=255, default="")
    coordinates = CoordinatesSerializer(required=False, allow_null=True, default=None)


class ScanSerializer(serializers.ModelSerializer):
    product = ProductShortSerializer(read_only=True)
    participant = ParticipantShortSerializer(read_only=True)

    class Meta:
        model = Scan
        fields = ["id", "product", "participant", "location", "coordinates", "created_at"]
        read_only_fields = fields
