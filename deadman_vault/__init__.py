"""
Deadman Vault - custody with liveness-gated inheritance
Vaults, their factory and the proof-of-claim certificate registry
"""

from .certificates import CertificateMetadata, ClaimCertificateRegistry, ClaimData
from .clock import ManualClock, SystemClock
from .commands import Command, CommandResult
from .errors import AuthorizationError, DeadmanVaultError, NotFoundError, StateError, ValidationError
from .events import Event, EventLog, EventType, Subscription
from .factory import VaultFactory
from .identity import ZERO_ADDRESS, Identity, is_valid_address
from .rules import TIMEOUT_PRESETS, VaultRules
from .system import DeadmanVaultSystem
from .vault import ClaimResult, UNSET_BENEFICIARY, Vault, VaultState

__version__ = "0.1.0"
__all__ = [
    "AuthorizationError",
    "CertificateMetadata",
    "ClaimCertificateRegistry",
    "ClaimData",
    "ClaimResult",
    "Command",
    "CommandResult",
    "DeadmanVaultError",
    "DeadmanVaultSystem",
    "Event",
    "EventLog",
    "EventType",
    "Identity",
    "ManualClock",
    "NotFoundError",
    "StateError",
    "Subscription",
    "SystemClock",
    "TIMEOUT_PRESETS",
    "UNSET_BENEFICIARY",
    "ValidationError",
    "Vault",
    "VaultFactory",
    "VaultRules",
    "VaultState",
    "ZERO_ADDRESS",
    "is_valid_address",
]
