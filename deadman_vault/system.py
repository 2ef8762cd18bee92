"""
Single-writer coordinator wiring the factory, vaults and certificate registry.

Every command is routed to exactly one entity. Vault operations serialize on
the vault's own lock; a claim additionally takes the registry lock while it
mints, always in vault -> registry order, so the two commit or roll back
together. Signed commands first take a per-signer lock that orders them by
nonce; the nonce advances only when the command succeeds.
"""

import logging
import re
import threading
from collections import namedtuple
from typing import Dict, Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from .certificates import ClaimCertificateRegistry
from .clock import Clock, SystemClock
from .commands import Command, CommandResult
from .errors import AuthorizationError, DeadmanVaultError, NotFoundError, ValidationError
from .events import EventLog
from .factory import VaultFactory
from .identity import Identity, address_from_public_key, derive_address, require_address
from .rules import VaultRules
from .vault import Vault

logger = logging.getLogger("deadman_vault.system")

Operation = namedtuple('Operation', ['handler', 'params'])

_INTEGER_PARAMS = {'amount', 'timeout', 'newDuration', 'tokenId'}
_DIGITS = re.compile(r"^[0-9]+$")

FACTORY_OPERATIONS = {
    'createVault': Operation(
        lambda factory, caller, beneficiary, timeout: factory.create_vault(caller, beneficiary, timeout),
        ('beneficiary', 'timeout')),
    'getVaultsForCreator': Operation(
        lambda factory, caller, identity: factory.get_vaults_for_creator(identity),
        ('identity',)),
    'getVaultsForBeneficiary': Operation(
        lambda factory, caller, identity: factory.get_vaults_for_beneficiary(identity),
        ('identity',)),
    'getClaimableVaults': Operation(
        lambda factory, caller, identity: factory.get_vaults_for_beneficiary(identity, expired_only=True),
        ('identity',)),
    'vaultCount': Operation(lambda factory, caller: factory.vault_count(), ()),
}

REGISTRY_OPERATIONS = {
    'getClaimData': Operation(
        lambda registry, caller, tokenId: registry.get_claim_data(tokenId), ('tokenId',)),
    'isAuthorizedMinter': Operation(
        lambda registry, caller, identity: registry.is_authorized_minter(identity), ('identity',)),
    'totalSupply': Operation(lambda registry, caller: registry.total_supply(), ()),
    'balanceOf': Operation(lambda registry, caller, owner: registry.balance_of(owner), ('owner',)),
    'tokenURI': Operation(lambda registry, caller, tokenId: registry.token_uri(tokenId), ('tokenId',)),
    'verifyAttestation': Operation(
        lambda registry, caller, tokenId: registry.verify_attestation(tokenId), ('tokenId',)),
}

VAULT_OPERATIONS = {
    'deposit': Operation(lambda vault, caller, amount: vault.deposit(caller, amount), ('amount',)),
    'withdraw': Operation(lambda vault, caller, amount: vault.withdraw(caller, amount), ('amount',)),
    'ping': Operation(lambda vault, caller: vault.ping(caller), ()),
    'setBeneficiary': Operation(
        lambda vault, caller, newBeneficiary: vault.set_beneficiary(caller, newBeneficiary),
        ('newBeneficiary',)),
    'setTimeout': Operation(
        lambda vault, caller, newDuration: vault.set_timeout(caller, newDuration), ('newDuration',)),
    'claim': Operation(lambda vault, caller: vault.claim(caller), ()),
    'isExpired': Operation(lambda vault, caller: vault.is_expired(), ()),
    'getState': Operation(lambda vault, caller: vault.state(), ()),
    'timeRemaining': Operation(lambda vault, caller: vault.time_remaining(), ()),
}


class DeadmanVaultSystem:
    """Entry point: one factory, one registry, a shared clock and event log"""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        rules: Optional[VaultRules] = None,
        events: Optional[EventLog] = None,
        deployer: str = "deadman-vault",
        signing_key: Optional[rsa.RSAPrivateKey] = None,
    ):
        self.clock = clock or SystemClock()
        self.rules = rules or VaultRules.default()
        self.events = events if events is not None else EventLog()

        factory_address = derive_address(b"DEADMAN_VAULT_FACTORY_V1", deployer)
        self.registry = ClaimCertificateRegistry(
            admin=factory_address,
            clock=self.clock,
            events=self.events,
            signing_key=signing_key
        )
        self.factory = VaultFactory(self.registry, self.clock, self.rules, self.events)

        self._nonces: Dict[str, int] = {}
        self._signer_locks: Dict[str, threading.Lock] = {}
        self._nonce_lock = threading.Lock()

    def vault(self, vault_id: str) -> Vault:
        return self.factory.get_vault(vault_id)

    def next_nonce(self, identity: str) -> int:
        """Nonce the identity's next signed command must carry"""
        identity = require_address(identity, 'identity')
        with self._nonce_lock:
            return self._nonces.get(identity, 0)

    def execute(self, command: Command) -> CommandResult:
        """Run one command; core errors come back as failed results"""
        try:
            signer = self._authenticate(command)
            if signer is None:
                value = self._dispatch(command)
            else:
                with self._signer_lock(signer):
                    expected = self.next_nonce(signer)
                    if command.nonce != expected:
                        raise AuthorizationError(
                            f"Signed command nonce {command.nonce!r} does not match expected nonce {expected}"
                        )
                    value = self._dispatch(command)
                    with self._nonce_lock:
                        self._nonces[signer] = expected + 1
        except DeadmanVaultError as exc:
            logger.warning("Command %s on %s failed: [%s] %s",
                           command.operation, command.entity_id, exc.kind, exc.message)
            return CommandResult.failure(exc)

        logger.debug("Command %s on %s by %s succeeded", command.operation, command.entity_id, command.caller)
        return CommandResult.success(value)

    def _signer_lock(self, signer: str) -> threading.Lock:
        with self._nonce_lock:
            return self._signer_locks.setdefault(signer, threading.Lock())

    def _authenticate(self, command: Command) -> Optional[str]:
        """Return the verified signer address, or None for an unsigned command"""
        if not command.is_signed() and not self.rules.require_signed_commands:
            return None

        if not (command.signature and command.public_key):
            raise AuthorizationError("Command must carry a public key and signature")

        if not Identity.verify_signature(command.payload(), command.signature, command.public_key):
            raise AuthorizationError("Command signature is invalid")

        signer = address_from_public_key(bytes.fromhex(command.public_key))
        if not isinstance(command.caller, str) or signer != command.caller.lower():
            raise AuthorizationError(f"Command signed by {signer}, not by caller {command.caller}")
        return signer

    def _dispatch(self, command: Command):
        entity_id = command.entity_id.lower()

        if entity_id == self.factory.address:
            target, operations = self.factory, FACTORY_OPERATIONS
        elif entity_id == self.registry.address:
            target, operations = self.registry, REGISTRY_OPERATIONS
        elif self.factory.has_vault(entity_id):
            target, operations = self.factory.get_vault(entity_id), VAULT_OPERATIONS
        else:
            raise NotFoundError(f"No vault, factory or registry with id {command.entity_id!r}")

        operation = operations.get(command.operation)
        if operation is None:
            raise ValidationError(f"Unknown operation {command.operation!r} for {command.entity_id}")

        supplied = set(command.arguments)
        expected = set(operation.params)
        if supplied != expected:
            missing = sorted(expected - supplied)
            extra = sorted(supplied - expected)
            raise ValidationError(
                f"Operation {command.operation!r} expects arguments {sorted(expected)}"
                f" (missing {missing}, unexpected {extra})"
            )

        arguments = {name: _coerce(name, value) for name, value in command.arguments.items()}
        return operation.handler(target, command.caller, **arguments)

    def describe(self) -> dict:
        return {
            'factory': self.factory.address,
            'registry': self.registry.address,
            'rules': self.rules.to_dict(),
            'vault_count': self.factory.vault_count(),
            'total_supply': self.registry.total_supply(),
        }


def _coerce(name: str, value):
    """Integer arguments may also arrive as decimal strings"""
    if name in _INTEGER_PARAMS and isinstance(value, str) and _DIGITS.match(value):
        return int(value)
    return value
