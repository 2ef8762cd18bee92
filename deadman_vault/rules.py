import os
from dataclasses import dataclass, asdict
from typing import Mapping, Optional

from .clock import DAY, HOUR, WEEK, YEAR
from .errors import ValidationError

MIN_TIMEOUT = HOUR
MAX_TIMEOUT = 10 * YEAR

TIMEOUT_PRESETS = {
    'one_week': WEEK,
    'one_month': 30 * DAY,
    'three_months': 90 * DAY,
    'six_months': 180 * DAY,
    'one_year': YEAR,
}

_TRUE = {'1', 'true', 'yes', 'on'}
_FALSE = {'0', 'false', 'no', 'off'}


@dataclass(frozen=True)
class VaultRules:
    """Configurable limits and policies shared by every vault"""

    # Liveness window bounds (seconds)
    min_timeout: int = MIN_TIMEOUT
    max_timeout: int = MAX_TIMEOUT

    # Whether the owner may still withdraw once the vault is claimable
    allow_withdraw_after_expiry: bool = True

    # Reject unsigned commands at the command layer
    require_signed_commands: bool = False

    def __post_init__(self):
        if not _is_int(self.min_timeout) or self.min_timeout <= 0:
            raise ValidationError(f"min_timeout must be a positive integer, got {self.min_timeout!r}")
        if not _is_int(self.max_timeout) or self.max_timeout < self.min_timeout:
            raise ValidationError(
                f"max_timeout must be an integer >= min_timeout ({self.min_timeout}), got {self.max_timeout!r}"
            )

    @classmethod
    def default(cls) -> 'VaultRules':
        return cls.permissive()

    @classmethod
    def permissive(cls) -> 'VaultRules':
        """Owner keeps full control until the beneficiary actually claims"""
        return cls(allow_withdraw_after_expiry=True)

    @classmethod
    def conservative(cls) -> 'VaultRules':
        """Funds are frozen for the owner once the liveness window lapses"""
        return cls(allow_withdraw_after_expiry=False)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'VaultRules':
        """Build rules from DEADMAN_* environment variables"""
        env = os.environ if environ is None else environ
        defaults = cls()

        return cls(
            min_timeout=_env_int(env, 'DEADMAN_MIN_TIMEOUT', defaults.min_timeout),
            max_timeout=_env_int(env, 'DEADMAN_MAX_TIMEOUT', defaults.max_timeout),
            allow_withdraw_after_expiry=_env_bool(
                env, 'DEADMAN_WITHDRAW_AFTER_EXPIRY', defaults.allow_withdraw_after_expiry
            ),
            require_signed_commands=_env_bool(
                env, 'DEADMAN_REQUIRE_SIGNED_COMMANDS', defaults.require_signed_commands
            ),
        )

    def validate_timeout(self, seconds) -> int:
        """Check a liveness timeout against the configured bounds"""
        if not _is_int(seconds):
            raise ValidationError(f"Timeout must be an integer number of seconds, got {seconds!r}")

        if not (self.min_timeout <= seconds <= self.max_timeout):
            raise ValidationError(
                f"Timeout {seconds}s outside allowed range [{self.min_timeout}, {self.max_timeout}]"
            )

        return seconds

    def to_dict(self) -> dict:
        return asdict(self)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == '':
        return default

    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValidationError(f"{name} must be a boolean flag, got {raw!r}")
