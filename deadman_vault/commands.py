"""
Command and result envelopes for invoking core operations
"""

import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from .errors import DeadmanVaultError, ValidationError
from .identity import Identity

_ENVELOPE_FIELDS = ('entity_id', 'operation', 'arguments', 'caller', 'nonce', 'public_key', 'signature')


@dataclass(frozen=True)
class Command:
    """A single operation request addressed to a vault, the factory or the registry.

    Signed commands carry the caller's next nonce; the signature covers it,
    so each signed command executes at most once.
    """
    entity_id: str
    operation: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    caller: Optional[str] = None
    nonce: Optional[int] = None
    public_key: Optional[str] = None  # hex, uncompressed x || y
    signature: Optional[str] = None  # hex

    def payload(self) -> bytes:
        """Canonical bytes covered by the command signature"""
        body = {
            'entity_id': self.entity_id.lower(),
            'operation': self.operation,
            'arguments': self.arguments,
            'caller': self.caller.lower() if isinstance(self.caller, str) else self.caller,
            'nonce': self.nonce,
        }
        return json.dumps(body, sort_keys=True, separators=(',', ':')).encode()

    def signed(self, identity: Identity, nonce: Optional[int] = None) -> 'Command':
        command = self if nonce is None else replace(self, nonce=nonce)
        return replace(
            command,
            public_key=identity.get_public_key_hex(),
            signature=identity.sign_message(command.payload())
        )

    def is_signed(self) -> bool:
        return bool(self.signature or self.public_key)

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in _ENVELOPE_FIELDS}

    @classmethod
    def from_dict(cls, data: Any) -> 'Command':
        if not isinstance(data, dict):
            raise ValidationError("Command must be a JSON object")

        unknown = set(data) - set(_ENVELOPE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown command fields: {', '.join(sorted(unknown))}")

        for name in ('entity_id', 'operation'):
            if not isinstance(data.get(name), str):
                raise ValidationError(f"Command field '{name}' must be a string")

        for name in ('caller', 'public_key', 'signature'):
            if data.get(name) is not None and not isinstance(data[name], str):
                raise ValidationError(f"Command field '{name}' must be a string")

        nonce = data.get('nonce')
        if nonce is not None and (not isinstance(nonce, int) or isinstance(nonce, bool) or nonce < 0):
            raise ValidationError("Command field 'nonce' must be a non-negative integer")

        arguments = data.get('arguments')
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise ValidationError("Command field 'arguments' must be an object")

        return cls(
            entity_id=data['entity_id'],
            operation=data['operation'],
            arguments=arguments,
            caller=data.get('caller'),
            nonce=nonce,
            public_key=data.get('public_key'),
            signature=data.get('signature')
        )


@dataclass
class CommandResult:
    """Success value or typed failure for an executed command"""
    ok: bool
    value: Any = None
    error_kind: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, value: Any = None) -> 'CommandResult':
        if hasattr(value, 'to_dict'):
            value = value.to_dict()
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: DeadmanVaultError) -> 'CommandResult':
        return cls(ok=False, error_kind=error.kind, message=error.message)

    def to_dict(self) -> dict:
        if self.ok:
            return {'ok': True, 'value': self.value}
        return {'ok': False, 'error': {'kind': self.error_kind, 'message': self.message}}
