"""
Identity utilities: address validation, key pairs and id derivation
"""

import hashlib
import re
from typing import Optional, Tuple

from ecdsa import SECP256k1, SigningKey, VerifyingKey
from ecdsa.keys import BadSignatureError, MalformedPointError

from .errors import ValidationError

ZERO_ADDRESS = "0x" + "0" * 40

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_valid_address(value) -> bool:
    """True for a well-formed 0x-prefixed 20-byte hex address"""
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


def normalize_address(value: str) -> str:
    return value.lower()


def require_address(value, field: str = "address", allow_zero: bool = False) -> str:
    """Validate and normalise an identity, raising ValidationError otherwise"""
    if not is_valid_address(value):
        raise ValidationError(f"{field} is not a valid address: {value!r}")

    address = normalize_address(value)
    if not allow_zero and address == ZERO_ADDRESS:
        raise ValidationError(f"{field} cannot be the zero address")
    return address


def address_from_public_key(public_key: bytes) -> str:
    """Derive the address for a 64-byte uncompressed public key"""
    if len(public_key) != 64:
        raise ValidationError(f"Public key must be 64 bytes, got {len(public_key)}")
    return "0x" + hashlib.sha3_256(public_key).digest()[-20:].hex()


def derive_address(tag: bytes, *parts: str) -> str:
    """Deterministic address from a domain tag and string parts"""
    hasher = hashlib.sha256()
    hasher.update(tag)
    for part in parts:
        hasher.update(part.encode())
        hasher.update(b"\x00")
    return "0x" + hasher.digest()[:20].hex()


class Identity:
    """SECP256k1 key pair that owns an address"""

    def __init__(self, private_key: Optional[bytes] = None):
        if private_key:
            self.private_key = SigningKey.from_string(private_key, curve=SECP256k1)
        else:
            self.private_key = SigningKey.generate(curve=SECP256k1)

        self.public_key = self.private_key.get_verifying_key()
        self.address = address_from_public_key(self.public_key.to_string())

    def get_public_key_hex(self) -> str:
        """Uncompressed public key (x || y) in hex"""
        return self.public_key.to_string().hex()

    def sign_message(self, message: bytes) -> str:
        """Sign message and return signature in hex"""
        return self.private_key.sign(message, hashfunc=hashlib.sha256).hex()

    def __repr__(self) -> str:
        return f"Identity({self.address})"

    @staticmethod
    def verify_signature(message: bytes, signature_hex: str, public_key_hex: str) -> bool:
        """Verify signature against message and public key"""
        try:
            vk = VerifyingKey.from_string(bytes.fromhex(public_key_hex), curve=SECP256k1)
            return vk.verify(bytes.fromhex(signature_hex), message, hashfunc=hashlib.sha256)
        except (BadSignatureError, MalformedPointError, TypeError, ValueError):
            return False

    @staticmethod
    def generate_key_pair() -> Tuple[str, str]:
        """Generate new key pair and return (private_key_hex, address)"""
        identity = Identity()
        return identity.private_key.to_string().hex(), identity.address
