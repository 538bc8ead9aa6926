from django.contrib import admin
from django import forms
from django.core.exceptions import ValidationError
import re

from core.models import (
    Participant,
    Product,
    ProductEvent,
    OwnershipTransfer,
    Notification,
    QualityCheck,
    Scan,
)

# --- Inlines ---

class ProductEventInline(admin.TabularInline):
    model = ProductEvent
    extra = 0
    fields = ("created_at", "event_type", "actor", "message")
    readonly_fields = ("created_at", "event_type", "actor", "message")
    can_delete = False
    show_change_link = False

    def has_add_permission(self, request, obj=None):
        return False


class OwnershipTransferInline(admin.TabularInline):
    model = OwnershipTransfer
    fk_name = "product"
    extra = 0
    fields = ("from_user", "to_user", "transfer_type", "status", "created_at", "resolved_at")
    readonly_fields = fields
    can_delete = False
    show_change_link = True

    def has_add_permission(self, request, obj=None):
        return False


# === Participant ===

class ParticipantForm(forms.ModelForm):
    class Meta:
        model = Participant
        fields = ["username", "name", "email", "role", "is_active"]

    def clean_username(self):
        username = self.cleaned_data["username"]
        if not re.fullmatch(r"[\w.@+-]+", username):
            raise ValidationError("Username may contain only letters, digits and @/./+/-/_ characters.")
        return username


@admin.register(Participant)
class ParticipantAdmin(admin.ModelAdmin):
    form = ParticipantForm
    list_display = ("username", "name", "role", "email", "is_active")
    search_fields = ("username", "name", "email")
    list_filter = ("role", "is_active")


# === Product ===

@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("batch_id", "name", "category", "owner", "status", "quantity", "unit", "created_at")
    list_filter = ("status", "category")
    search_fields = ("batch_id", "name", "farm_name", "owner__username", "owner__name")
    # custody only moves through accepted transfers
    readonly_fields = ("batch_id", "qr_code", "owner", "status", "created_at", "updated_at")
    inlines = [OwnershipTransferInline, ProductEventInline]

    def has_add_permission(self, request):
        return False


# === Transfers & Notifications ===

@admin.register(OwnershipTransfer)
class OwnershipTransferAdmin(admin.ModelAdmin):
    list_display = ("id", "product", "from_user", "to_user", "transfer_type", "status", "block_number", "created_at")
    list_filter = ("status", "transfer_type")
    search_fields = ("product__batch_id", "from_user__username", "to_user__username")
    readonly_fields = [f.name for f in OwnershipTransfer._meta.fields]

    def block_number(self, obj):
        return obj.block.block_number if obj.block_id else "—"
    block_number.short_description = "Block"

    def has_add_permission(self, request):
        return False


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("recipient", "title", "type", "is_read", "created_at")
    list_filter = ("type", "is_read")
    search_fields = ("recipient__username", "title", "message")


# === Quality checks & scans ===

@admin.register(QualityCheck)
class QualityCheckAdmin(admin.ModelAdmin):
    list_display = ("product", "check_type", "score", "inspector", "verified", "created_at")
    list_filter = ("check_type", "verified")
    search_fields = ("product__batch_id", "inspector__username", "check_type")
    raw_id_fields = ("product", "inspector")


@admin.register(Scan)
class ScanAdmin(admin.ModelAdmin):
    list_display = ("product", "participant", "location", "created_at")
    search_fields = ("product__batch_id", "participant__username", "location")
    raw_id_fields = ("product", "participant")
    readonly_fields = ("created_at",)
