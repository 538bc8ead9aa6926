from django.contrib import admin

from ledger.models import OwnershipBlock


@admin.register(OwnershipBlock)
class OwnershipBlockAdmin(admin.ModelAdmin):
    list_display = ("product", "block_number", "username", "role", "transfer_type", "short_hash", "created_at")
    list_filter = ("transfer_type", "role")
    search_fields = ("product__batch_id", "username", "ownership_hash")
    ordering = ("product", "block_number")
    readonly_fields = [f.name for f in OwnershipBlock._meta.fields]

    @admin.display(description="hash")
    def short_hash(self, obj):
        return f"{obj.ownership_hash[:10]}..."

    # blocks are append-only, the admin only reads them
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
