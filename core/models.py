import uuid

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils.translation import gettext_lazy as _

from ledger.models import TransferType


# ===== Participants =====


# === Participant (user directory) ===
class Participant(models.Model):

    class Role(models.TextChoices):
        FARMER = "farmer", _("Farmer")
        DISTRIBUTOR = "distributor", _("Distributor")
        RETAILER = "retailer", _("Retailer")
        CONSUMER = "consumer", _("Consumer")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    username = models.CharField(max_length=150, unique=True)
    name = models.CharField(max_length=200)
    email = models.EmailField(unique=True)
    role = models.CharField(
        max_length=16,
        choices=Role.choices,
        default=Role.FARMER,
        db_index=True,
    )

    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["username"]
        indexes = [
            models.Index(fields=["role", "is_active"], name="core_partic_role_4f0c2e_idx"),
        ]

    def __str__(self):
        return f"{self.name} ({self.username}, {self.role})"


# Product attributes a custodian of the given role may change while holding it
ROLE_EDITABLE_FIELDS = {
    Participant.Role.FARMER.value: [
        "name",
        "category",
        "description",
        "quantity",
        "unit",
        "farm_name",
        "location",
        "harvest_date",
        "certifications",
    ],
    Participant.Role.DISTRIBUTOR.value: [
        "quantity",
        "distributor_name",
        "warehouse_location",
        "dispatch_date",
    ],
    Participant.Role.RETAILER.value: [
        "price",
        "payment_proof_url",
        "store_name",
        "store_location",
        "arrival_date",
    ],
    Participant.Role.CONSUMER.value: [],
}


def editable_fields_for_role(role: str) -> list[str]:
    return list(ROLE_EDITABLE_FIELDS.get(role, []))


# ===== End of participants =====





# ===== Products =====


# === Product ===
class Product(models.Model):

    class Status(models.TextChoices):
        REGISTERED = "registered", _("Registered")
        IN_TRANSIT = "in_transit", _("In transit")
        IN_STORE = "in_store", _("In store")
        SOLD = "sold", _("Sold")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    category = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    quantity = models.DecimalField(max_digits=12, decimal_places=3)
    unit = models.CharField(max_length=16)
    farm_name = models.CharField(max_length=200)
    location = models.CharField(max_length=255)
    harvest_date = models.DateTimeField()
    certifications = models.JSONField(default=list, blank=True)

    batch_id = models.CharField(max_length=32, unique=True)
    qr_code = models.CharField(max_length=500)

    # current-owner projection, always equal to the owner of the latest block
    owner = models.ForeignKey(
        "Participant",
        on_delete=models.PROTECT,
        related_name="owned_products",
        db_index=True,
    )
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.REGISTERED,
        db_index=True,
    )

    # distributor
    distributor_name = models.CharField(max_length=200, blank=True)
    warehouse_location = models.CharField(max_length=255, blank=True)
    dispatch_date = models.DateTimeField(null=True, blank=True)

    # retailer
    price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    payment_proof_url = models.URLField(max_length=500, blank=True)
    store_name = models.CharField(max_length=200, blank=True)
    store_location = models.CharField(max_length=255, blank=True)
    arrival_date = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "batch_id"]
        indexes = [
            models.Index(fields=["owner", "status"], name="core_produc_owner_i_6a1b3d_idx"),
            models.Index(fields=["category"], name="core_produc_categor_9e2c71_idx"),
        ]

    def __str__(self):
        return f"{self.batch_id} {self.name}"


# === Product history ===
class ProductEvent(models.Model):

    class EventType(models.TextChoices):
        OWNERSHIP_REGISTRATION = "ownership_registration", _("Ownership registration")
        OWNERSHIP_TRANSFER = "ownership_transfer", _("Ownership transfer")
        FIELD_UPDATE = "field_update", _("Field update")

    product = models.ForeignKey(
        "Product",
        on_delete=models.CASCADE,
        related_name="events",
        db_index=True,
    )
    event_type = models.CharField(max_length=32, choices=EventType.choices)
    actor = models.ForeignKey(
        "Participant",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="product_events",
    )
    message = models.TextField(blank=True)
    extra = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["product", "event_type"], name="core_produc_product_3d8f40_idx"),
        ]

    def __str__(self):
        return f"[{self.created_at:%Y-%m-%d %H:%M}] {self.product_id}: {self.get_event_type_display()}"


# === Quality checks ===
class QualityCheck(models.Model):
    product = models.ForeignKey(
        "Product",
        on_delete=models.CASCADE,
        related_name="quality_checks",
    )
    inspector = models.ForeignKey(
        "Participant",
        on_delete=models.PROTECT,
        related_name="quality_checks",
    )
    check_type = models.CharField(max_length=100)
    score = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )
    notes = models.TextField(blank=True)
    certification_url = models.URLField(max_length=500, blank=True)
    verified = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["product", "created_at"], name="core_qualit_product_2e9a14_idx"),
        ]

    def __str__(self):
        return f"{self.product_id} {self.check_type}: {self.score}"


# === Scan log ===
class Scan(models.Model):
    product = models.ForeignKey(
        "Product",
        on_delete=models.CASCADE,
        related_name="scans",
    )
    # anonymous QR scans have no participant
    participant = models.ForeignKey(
        "Participant",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="scans",
    )
    location = models.CharField(max_length=255, blank=True)
    coordinates = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["participant", "created_at"], name="core_scan_partici_7b3f05_idx"),
        ]

    def __str__(self):
        return f"[{self.created_at:%Y-%m-%d %H:%M}] scan {self.product_id}"


# ===== End of products =====





# ===== Transfers =====


# === Ownership transfer (workflow record, the chain itself lives in ledger) ===
class OwnershipTransfer(models.Model):

    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        COMPLETED = "completed", _("Completed")
        REJECTED = "rejected", _("Rejected")

    product = models.ForeignKey(
        "Product",
        on_delete=models.PROTECT,
        related_name="transfers",
        db_index=True,
    )
    from_user = models.ForeignKey(
        "Participant",
        on_delete=models.PROTECT,
        related_name="outgoing_transfers",
    )
    to_user = models.ForeignKey(
        "Participant",
        on_delete=models.PROTECT,
        related_name="incoming_transfers",
    )
    transfer_type = models.CharField(
        max_length=16,
        choices=TransferType.choices,
        default=TransferType.TRANSFER,
    )
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
    )
    notes = models.TextField(blank=True)

    block = models.OneToOneField(
        "ledger.OwnershipBlock",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="transfer",
    )

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "id"]
        indexes = [
            models.Index(fields=["product", "status"], name="core_ownersh_product_b27e19_idx"),
            models.Index(fields=["to_user", "status"], name="core_ownersh_to_user_5c0a8f_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["product", "to_user"],
                condition=Q(status="pending"),
                name="unique_pending_transfer_per_recipient",
            ),
            models.CheckConstraint(
                condition=~Q(from_user=models.F("to_user")),
                name="transfer_not_to_self",
            ),
            models.CheckConstraint(
                condition=Q(status="completed", block__isnull=False) | ~Q(status="completed"),
                name="completed_transfer_has_block",
            ),
        ]

    @property
    def is_pending(self) -> bool:
        return self.status == self.Status.PENDING

    def __str__(self):
        return f"Transfer {self.id} {self.from_user_id} → {self.to_user_id} ({self.get_status_display()})"


# === Notifications ===
class Notification(models.Model):

    class Type(models.TextChoices):
        TRANSFER_REQUEST = "transfer_request", _("Transfer request")
        TRANSFER_ACCEPTED = "transfer_accepted", _("Transfer accepted")
        TRANSFER_REJECTED = "transfer_rejected", _("Transfer rejected")
        INFO = "info", _("Info")

    recipient = models.ForeignKey(
        "Participant",
        on_delete=models.CASCADE,
        related_name="notifications",
        db_index=True,
    )
    title = models.CharField(max_length=200)
    message = models.TextField()
    type = models.CharField(max_length=32, choices=Type.choices, default=Type.INFO)
    product = models.ForeignKey(
        "Product",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="notifications",
    )
    is_read = models.BooleanField(default=False, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at", "id"]
        indexes = [
            models.Index(fields=["recipient", "is_read"], name="core_notifi_recipie_8b4d27_idx"),
        ]

    def __str__(self):
        return f"{self.recipient_id}: {self.title}"


# ===== End of transfers =====
