from rest_framework import status
from rest_framework.exceptions import APIException, NotFound, PermissionDenied


# === Authorization ===

class NotOwner(PermissionDenied):
    default_detail = "Only the current owner may do this."
    default_code = "not_owner"


class NotRecipient(PermissionDenied):
    default_detail = "Only the recipient of the transfer may resolve it."
    default_code = "not_recipient"


class FieldNotEditable(PermissionDenied):
    default_detail = "The current owner is not allowed to change these fields."
    default_code = "field_not_editable"


# === Not found ===

class UnknownRecipient(NotFound):
    default_detail = "Participant not found."
    default_code = "unknown_recipient"


class ProductNotFound(NotFound):
    default_detail = "Product not found."
    default_code = "product_not_found"


class TransferNotFound(NotFound):
    default_detail = "Transfer not found."
    default_code = "transfer_not_found"


# === Ordering ===

class InvalidTransferState(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Transfer is no longer pending."
    default_code = "invalid_transfer_state"
