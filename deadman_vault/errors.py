"""
Error taxonomy for deadman vault operations
"""


class DeadmanVaultError(Exception):
    """Base class for every failure raised by the vault core"""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {'kind': self.kind, 'message': self.message}


class ValidationError(DeadmanVaultError):
    """Malformed or out-of-bounds input"""
    kind = "validation"


class AuthorizationError(DeadmanVaultError):
    """Caller does not hold the role the operation requires"""
    kind = "authorization"


class StateError(DeadmanVaultError):
    """Operation is not valid for the entity's current state"""
    kind = "state"


class NotFoundError(DeadmanVaultError):
    """Reference to a vault or certificate that does not exist"""
    kind = "not_found"
