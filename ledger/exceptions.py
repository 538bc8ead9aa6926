from rest_framework import status
from rest_framework.exceptions import APIException


class ChainIntegrityError(APIException):
    """
    Recomputed hashes disagree with what is stored. The chain of this
    product must not be extended until someone repairs it by hand.
    """
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Ownership chain failed verification; further transfers are blocked."
    default_code = "chain_integrity_error"

    def __init__(self, detail=None, code=None, errors=None):
        super().__init__(detail, code)
        self.errors = errors or []


class ChainWriteError(APIException):
    """Block could not be persisted. Retrying the whole operation is safe."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Could not write ownership block, please retry."
    default_code = "chain_write_error"


class BlockImmutableError(Exception):
    """Raised on any attempt to update or delete a stored block."""
