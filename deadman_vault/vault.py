import functools
import logging
import threading
from dataclasses import dataclass, asdict
from typing import Optional

from .certificates import ClaimCertificateRegistry
from .clock import Clock
from .errors import AuthorizationError, DeadmanVaultError, StateError, ValidationError
from .events import EventLog, EventType
from .identity import ZERO_ADDRESS, require_address
from .rules import VaultRules

logger = logging.getLogger("deadman_vault.vault")

UNSET_BENEFICIARY = ZERO_ADDRESS


@dataclass
class VaultState:
    """Point-in-time view of a vault"""
    vault_id: str
    owner: str
    beneficiary: str
    balance: int
    last_ping: int
    timeout: int
    expired: bool
    time_remaining: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ClaimResult:
    """Outcome of a successful claim"""
    vault_id: str
    previous_owner: str
    new_owner: str
    amount: int
    token_id: int

    def to_dict(self) -> dict:
        return asdict(self)


def _transactional(method):
    """Serialize on the vault lock and undo every effect if the call fails"""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock, self._events.batch():
            snapshot = self._snapshot()
            try:
                return method(self, *args, **kwargs)
            except DeadmanVaultError as exc:
                self._restore(snapshot)
                logger.warning("%s rejected on vault %s: [%s] %s",
                               method.__name__, self.vault_id, exc.kind, exc.message)
                raise
            except Exception:
                self._restore(snapshot)
                raise

    return wrapper


class Vault:
    """Deadman-switch custody unit.

    The owner holds the vault while pinging within ``timeout`` seconds. Once
    the window lapses the vault is expired (derived from the clock, never
    stored) and the beneficiary may claim it: ownership moves to the
    beneficiary, the beneficiary slot is cleared and the liveness timer
    restarts. The balance stays in the vault under its new owner.
    """

    def __init__(
        self,
        vault_id: str,
        owner: str,
        beneficiary: str,
        timeout: int,
        clock: Clock,
        registry: ClaimCertificateRegistry,
        rules: Optional[VaultRules] = None,
        events: Optional[EventLog] = None,
    ):
        self.rules = rules or VaultRules.default()
        self.vault_id = require_address(vault_id, 'vault_id')

        owner = require_address(owner, 'owner')
        beneficiary = require_address(beneficiary, 'beneficiary')
        if beneficiary == owner:
            raise ValidationError("Beneficiary cannot be the owner")

        self._owner = owner
        self._beneficiary = beneficiary
        self._timeout = self.rules.validate_timeout(timeout)
        self._balance = 0

        self._clock = clock
        self._registry = registry
        self._events = events if events is not None else EventLog()
        self._lock = threading.RLock()
        self._last_ping = clock.now()

    # -- read model --------------------------------------------------------

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def beneficiary(self) -> str:
        return self._beneficiary

    @property
    def balance(self) -> int:
        return self._balance

    @property
    def last_ping(self) -> int:
        return self._last_ping

    @property
    def timeout(self) -> int:
        return self._timeout

    def has_beneficiary(self) -> bool:
        return self._beneficiary != UNSET_BENEFICIARY

    def is_expired(self) -> bool:
        """True once timeout seconds have passed since the last ping"""
        with self._lock:
            return self._expired_at(self._clock.now())

    def expires_at(self) -> int:
        with self._lock:
            return self._last_ping + self._timeout

    def time_remaining(self) -> int:
        """Seconds until the vault becomes claimable, 0 once expired"""
        with self._lock:
            return max(0, self._last_ping + self._timeout - self._clock.now())

    def state(self) -> VaultState:
        with self._lock:
            now = self._clock.now()
            return VaultState(
                vault_id=self.vault_id,
                owner=self._owner,
                beneficiary=self._beneficiary,
                balance=self._balance,
                last_ping=self._last_ping,
                timeout=self._timeout,
                expired=self._expired_at(now),
                time_remaining=max(0, self._last_ping + self._timeout - now)
            )

    # -- owner and depositor operations ------------------------------------

    @_transactional
    def deposit(self, caller: str, amount: int) -> int:
        """Add funds; anyone may deposit. Returns the new balance."""
        depositor = require_address(caller, 'depositor')
        amount = _require_amount(amount)

        self._balance += amount
        self._emit(EventType.DEPOSITED, **{'from': depositor, 'amount': amount, 'balance': self._balance})
        logger.info("Vault %s: deposit %d from %s, balance %d", self.vault_id, amount, depositor, self._balance)
        return self._balance

    @_transactional
    def withdraw(self, caller: str, amount: int) -> int:
        """Owner-only withdrawal. Returns the remaining balance."""
        owner = self._require_owner(caller)
        amount = _require_amount(amount)

        if not self.rules.allow_withdraw_after_expiry and self._expired_at(self._clock.now()):
            raise StateError("Withdrawals are frozen once the vault has expired")

        if amount > self._balance:
            raise StateError(f"Insufficient balance: requested {amount}, available {self._balance}")

        self._balance -= amount
        self._emit(EventType.WITHDRAWN, to=owner, amount=amount, balance=self._balance)
        logger.info("Vault %s: withdraw %d by %s, balance %d", self.vault_id, amount, owner, self._balance)
        return self._balance

    @_transactional
    def ping(self, caller: str) -> int:
        """Owner proof of life. Returns the new liveness timestamp."""
        owner = self._require_owner(caller)

        self._touch(self._clock.now())
        self._emit(EventType.PINGED, owner=owner, timestamp=self._last_ping)
        logger.info("Vault %s: ping by %s", self.vault_id, owner)
        return self._last_ping

    @_transactional
    def set_beneficiary(self, caller: str, new_beneficiary: str) -> None:
        owner = self._require_owner(caller)
        new_beneficiary = require_address(new_beneficiary, 'beneficiary')
        if new_beneficiary == owner:
            raise ValidationError("Beneficiary cannot be the owner")

        old = self._beneficiary
        self._beneficiary = new_beneficiary
        self._emit(EventType.BENEFICIARY_SET, old=old, new=new_beneficiary)
        logger.info("Vault %s: beneficiary %s -> %s", self.vault_id, old, new_beneficiary)

    @_transactional
    def set_timeout(self, caller: str, new_timeout: int) -> None:
        self._require_owner(caller)
        new_timeout = self.rules.validate_timeout(new_timeout)

        old = self._timeout
        self._timeout = new_timeout
        self._emit(EventType.TIMEOUT_SET, old=old, new=new_timeout)
        logger.info("Vault %s: timeout %ds -> %ds", self.vault_id, old, new_timeout)

    # -- inheritance -------------------------------------------------------

    @_transactional
    def claim(self, caller: str) -> ClaimResult:
        """Transfer the vault to its beneficiary after expiry.

        Mints a proof-of-claim certificate for the balance held at the
        moment of claim. If minting fails the vault is left untouched.
        """
        caller = require_address(caller, 'caller')
        now = self._clock.now()

        if not self._expired_at(now):
            remaining = self._last_ping + self._timeout - now
            raise StateError(f"Vault is not claimable for another {remaining}s")

        if not self.has_beneficiary() or caller != self._beneficiary:
            raise AuthorizationError("Only the designated beneficiary can claim this vault")

        previous_owner = self._owner
        amount = self._balance

        self._owner = caller
        self._beneficiary = UNSET_BENEFICIARY
        self._touch(now)

        # Minting is the final step so nothing can fail after the certificate exists
        with self._registry.reservation() as token_id:
            self._emit(EventType.CLAIMED, previous_owner=previous_owner, new_owner=caller,
                       amount=amount, token_id=token_id)
            result = ClaimResult(
                vault_id=self.vault_id,
                previous_owner=previous_owner,
                new_owner=caller,
                amount=amount,
                token_id=token_id
            )
            self._registry.mint(self.vault_id, caller, self.vault_id, amount)

        logger.info("Vault %s: claimed by %s from %s (amount %d, certificate #%d)",
                    self.vault_id, caller, previous_owner, amount, token_id)
        return result

    # -- internals ---------------------------------------------------------

    def _expired_at(self, now: int) -> bool:
        return now - self._last_ping >= self._timeout

    def _touch(self, now: int) -> None:
        self._last_ping = max(self._last_ping, now)

    def _require_owner(self, caller: str) -> str:
        caller = require_address(caller, 'caller')
        if caller != self._owner:
            raise AuthorizationError("Only the vault owner can perform this operation")
        return caller

    def _emit(self, event_type: EventType, /, **data) -> None:
        self._events.append(event_type, self.vault_id, self._clock.now(), **data)

    def _snapshot(self) -> tuple:
        return (self._owner, self._beneficiary, self._balance, self._last_ping, self._timeout)

    def _restore(self, snapshot: tuple) -> None:
        self._owner, self._beneficiary, self._balance, self._last_ping, self._timeout = snapshot

    def __repr__(self) -> str:
        return f"Vault({self.vault_id}, owner={self._owner}, balance={self._balance})"


def _require_amount(amount) -> int:
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise ValidationError(f"Amount must be an integer, got {amount!r}")
    if amount <= 0:
        raise ValidationError(f"Amount must be positive, got {amount}")
    return amount
