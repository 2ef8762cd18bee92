"""
Proof-of-claim certificates - non-fungible, immutable inheritance records
"""

import base64
import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Set

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .clock import Clock
from .errors import AuthorizationError, NotFoundError, ValidationError
from .events import EventLog, EventType
from .identity import derive_address, require_address

logger = logging.getLogger("deadman_vault.certificates")

_PSS = padding.PSS(
    mgf=padding.MGF1(hashes.SHA256()),
    salt_length=padding.PSS.MAX_LENGTH
)


@dataclass
class CertificateMetadata:
    """Collection-level certificate metadata"""
    name: str
    symbol: str
    description: str

    @classmethod
    def default(cls) -> 'CertificateMetadata':
        return cls(
            name="Deadman Vault Proof of Claim",
            symbol="DMVPOC",
            description="Evidence that a beneficiary inherited a deadman vault after its owner went silent",
        )


@dataclass(frozen=True)
class ClaimData:
    """Immutable record stored for each minted certificate"""
    beneficiary: str
    claimed_at: int
    vault_id: str
    amount: int

    def to_dict(self) -> dict:
        return asdict(self)

    def payload(self, token_id: int) -> bytes:
        """Canonical bytes covered by the registry attestation"""
        record = {'token_id': token_id, **self.to_dict()}
        return json.dumps(record, sort_keys=True, separators=(',', ':')).encode()


class ClaimCertificateRegistry:
    """Mints one certificate per successful vault claim.

    Only identities on the minter allowlist may mint. The registry admin
    (normally the vault factory) maintains that allowlist. Certificates are
    bound to the beneficiary they were minted for and cannot be transferred.
    Each record is signed with the registry's RSA key so holders can prove
    it was issued here.
    """

    def __init__(
        self,
        admin: str,
        clock: Clock,
        events: Optional[EventLog] = None,
        metadata: Optional[CertificateMetadata] = None,
        address: Optional[str] = None,
        signing_key: Optional[rsa.RSAPrivateKey] = None,
    ):
        self.admin = require_address(admin, 'admin')
        self.address = require_address(address, 'address') if address else \
            derive_address(b"DEADMAN_CLAIM_REGISTRY_V1", self.admin)
        self.metadata = metadata or CertificateMetadata.default()

        self._clock = clock
        self._events = events if events is not None else EventLog()
        self._signing_key = signing_key or rsa.generate_private_key(
            public_exponent=65537,
            key_size=2048
        )

        self._claims: Dict[int, ClaimData] = {}
        self._owners: Dict[int, str] = {}
        self._holdings: Dict[str, List[int]] = {}
        self._attestations: Dict[int, bytes] = {}
        self._authorized_minters: Set[str] = set()
        self._next_token_id = 1
        self._lock = threading.RLock()

    # -- allowlist ---------------------------------------------------------

    def authorize_minter(self, caller: str, minter: str) -> bool:
        """Add minter to the allowlist; returns False if already present"""
        with self._lock, self._events.batch():
            self._require_admin(caller)
            minter = require_address(minter, 'minter')

            if minter in self._authorized_minters:
                return False

            self._authorized_minters.add(minter)
            self._events.append(EventType.MINTER_AUTHORIZED, self.address, self._clock.now(), minter=minter)
            logger.info("Authorized minter %s", minter)
            return True

    def revoke_minter(self, caller: str, minter: str) -> bool:
        with self._lock, self._events.batch():
            self._require_admin(caller)
            minter = require_address(minter, 'minter')

            if minter not in self._authorized_minters:
                return False

            self._authorized_minters.discard(minter)
            self._events.append(EventType.MINTER_REVOKED, self.address, self._clock.now(), minter=minter)
            logger.info("Revoked minter %s", minter)
            return True

    def is_authorized_minter(self, identity: str) -> bool:
        with self._lock:
            return isinstance(identity, str) and identity.lower() in self._authorized_minters

    def _require_admin(self, caller: str) -> None:
        if require_address(caller, 'caller') != self.admin:
            raise AuthorizationError(f"Only the registry admin {self.admin} can manage minters")

    # -- minting -----------------------------------------------------------

    @contextmanager
    def reservation(self):
        """Hold the registry lock and yield the token id the next mint will assign"""
        with self._lock:
            yield self._next_token_id

    def mint(self, caller: str, beneficiary: str, vault_id: str, amount: int) -> int:
        """Record a claim and return the new certificate's token id"""
        with self._lock, self._events.batch():
            caller = require_address(caller, 'caller')
            if caller not in self._authorized_minters:
                logger.warning("Mint rejected: %s is not an authorized minter", caller)
                raise AuthorizationError(f"{caller} is not an authorized minter")

            beneficiary = require_address(beneficiary, 'beneficiary')
            vault_id = require_address(vault_id, 'vault_id')
            if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
                raise ValidationError(f"Certificate amount must be a non-negative integer, got {amount!r}")

            token_id = self._next_token_id
            claim = ClaimData(
                beneficiary=beneficiary,
                claimed_at=self._clock.now(),
                vault_id=vault_id,
                amount=amount
            )
            signature = self._signing_key.sign(claim.payload(token_id), _PSS, hashes.SHA256())

            self._claims[token_id] = claim
            self._owners[token_id] = beneficiary
            self._holdings.setdefault(beneficiary, []).append(token_id)
            self._attestations[token_id] = signature
            self._next_token_id = token_id + 1

            self._events.append(
                EventType.CERTIFICATE_MINTED, self.address, claim.claimed_at,
                token_id=token_id, beneficiary=beneficiary, vault_id=vault_id, amount=amount
            )
            logger.info("Minted certificate #%d for %s (vault %s, amount %d)",
                        token_id, beneficiary, vault_id, amount)
            return token_id

    # -- queries -----------------------------------------------------------

    def total_supply(self) -> int:
        with self._lock:
            return self._next_token_id - 1

    def get_claim_data(self, token_id: int) -> ClaimData:
        with self._lock:
            try:
                return self._claims[token_id]
            except (KeyError, TypeError):
                raise NotFoundError(f"Certificate {token_id!r} has not been minted") from None

    def owner_of(self, token_id: int) -> str:
        return self.get_claim_data(token_id).beneficiary

    def balance_of(self, owner: str) -> int:
        """Number of certificates held by owner"""
        return len(self.tokens_of(owner))

    def tokens_of(self, owner: str) -> List[int]:
        owner = require_address(owner, 'owner', allow_zero=True)
        with self._lock:
            return list(self._holdings.get(owner, []))

    def token_uri(self, token_id: int) -> str:
        """Self-contained JSON metadata as a base64 data URI"""
        claim = self.get_claim_data(token_id)
        document = {
            'name': f"{self.metadata.name} #{token_id}",
            'symbol': self.metadata.symbol,
            'description': self.metadata.description,
            'attributes': [
                {'trait_type': 'Beneficiary', 'value': claim.beneficiary},
                {'trait_type': 'Vault', 'value': claim.vault_id},
                {'trait_type': 'Amount', 'value': str(claim.amount)},
                {'trait_type': 'Claimed At', 'display_type': 'date', 'value': claim.claimed_at},
            ],
        }
        encoded = base64.b64encode(json.dumps(document, sort_keys=True).encode()).decode()
        return f"data:application/json;base64,{encoded}"

    # -- attestations ------------------------------------------------------

    def attestation(self, token_id: int) -> bytes:
        self.get_claim_data(token_id)
        with self._lock:
            return self._attestations[token_id]

    def verification_key(self) -> bytes:
        """Registry public key, DER-encoded SubjectPublicKeyInfo"""
        return self._signing_key.public_key().public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        )

    def verify_attestation(self, token_id: int, signature: Optional[bytes] = None) -> bool:
        """Check a signature over the stored claim record"""
        claim = self.get_claim_data(token_id)
        if signature is None:
            signature = self.attestation(token_id)

        public_key = serialization.load_der_public_key(self.verification_key())
        try:
            public_key.verify(signature, claim.payload(token_id), _PSS, hashes.SHA256())
            return True
        except InvalidSignature:
            return False
