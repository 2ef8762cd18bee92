import logging
import threading
from typing import Dict, List, Optional

from .certificates import ClaimCertificateRegistry
from .clock import Clock
from .errors import NotFoundError
from .events import EventLog, EventType
from .identity import derive_address, require_address
from .rules import VaultRules
from .vault import Vault

logger = logging.getLogger("deadman_vault.factory")


class VaultFactory:
    """Creates vaults and keeps an append-only index of them by creator.

    The index records who *created* each vault. A vault that changes hands
    through a claim stays listed under its creator.
    """

    def __init__(
        self,
        registry: ClaimCertificateRegistry,
        clock: Clock,
        rules: Optional[VaultRules] = None,
        events: Optional[EventLog] = None,
    ):
        # The factory manages the registry allowlist under the admin identity
        self.address = registry.admin
        self.registry = registry
        self.rules = rules or VaultRules.default()

        self._clock = clock
        self._events = events if events is not None else EventLog()
        self._vaults: Dict[str, Vault] = {}
        self._by_creator: Dict[str, List[str]] = {}
        self._order: List[str] = []
        self._nonce = 0
        self._lock = threading.RLock()

    def create_vault(self, creator: str, beneficiary: str, timeout: int) -> str:
        """Deploy a vault owned by creator and return its id"""
        with self._lock, self._events.batch():
            creator = require_address(creator, 'creator')
            vault_id = derive_address(b"DEADMAN_VAULT_V1", self.address, creator, str(self._nonce))

            vault = Vault(
                vault_id=vault_id,
                owner=creator,
                beneficiary=beneficiary,
                timeout=timeout,
                clock=self._clock,
                registry=self.registry,
                rules=self.rules,
                events=self._events
            )
            self.registry.authorize_minter(self.address, vault_id)

            self._nonce += 1
            self._vaults[vault_id] = vault
            self._order.append(vault_id)
            self._by_creator.setdefault(creator, []).append(vault_id)

            self._events.append(
                EventType.VAULT_CREATED, vault_id, vault.last_ping,
                creator=creator, vault_id=vault_id, beneficiary=vault.beneficiary, timeout=vault.timeout
            )
            logger.info("Created vault %s for %s (beneficiary %s, timeout %ds)",
                        vault_id, creator, vault.beneficiary, vault.timeout)
            return vault_id

    def get_vaults_for_creator(self, creator: str) -> List[str]:
        creator = require_address(creator, 'creator', allow_zero=True)
        with self._lock:
            return list(self._by_creator.get(creator, []))

    def get_vaults_for_beneficiary(self, identity: str, expired_only: bool = False) -> List[str]:
        """Vaults currently naming identity as beneficiary, in creation order.

        Computed from live vault state, so a claimed vault drops out (its
        beneficiary slot is cleared) and reconfigured vaults follow their
        new beneficiary. With expired_only, only vaults claimable right now.
        """
        identity = require_address(identity, 'identity')
        with self._lock:
            return [
                vault_id for vault_id in self._order
                if self._vaults[vault_id].beneficiary == identity
                and (not expired_only or self._vaults[vault_id].is_expired())
            ]

    def get_vault(self, vault_id: str) -> Vault:
        with self._lock:
            vault = self._vaults.get(vault_id.lower()) if isinstance(vault_id, str) else None
        if vault is None:
            raise NotFoundError(f"Vault {vault_id!r} does not exist")
        return vault

    def has_vault(self, vault_id: str) -> bool:
        with self._lock:
            return isinstance(vault_id, str) and vault_id.lower() in self._vaults

    def all_vaults(self) -> List[str]:
        with self._lock:
            return list(self._order)

    def vault_count(self) -> int:
        with self._lock:
            return len(self._order)
