import threading
import unittest

from cryptography.hazmat.primitives.asymmetric import rsa

from deadman_vault.clock import DAY, ManualClock
from deadman_vault.errors import AuthorizationError, StateError, ValidationError
from deadman_vault.events import EventType
from deadman_vault.identity import Identity
from deadman_vault.system import DeadmanVaultSystem
from deadman_vault.vault import UNSET_BENEFICIARY

DEPOSIT = 2_300_000_000_000_000_000  # 2.3 ETH in wei
THIRTY_DAYS = 2_592_000


class TestInheritanceScenarios(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.signing_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    def setUp(self):
        """Set up test fixtures"""
        self.clock = ManualClock()
        self.system = DeadmanVaultSystem(clock=self.clock, signing_key=self.signing_key)

        self.owner = Identity().address
        self.beneficiary = Identity().address
        self.stranger = Identity().address

        self.vault_id = self.system.factory.create_vault(self.owner, self.beneficiary, THIRTY_DAYS)
        self.vault = self.system.vault(self.vault_id)
        self.vault.deposit(self.owner, DEPOSIT)

    def test_scenario_a_claim_after_silence(self):
        """Test beneficiary inherits after 31 days without a ping"""
        self.clock.advance(2_678_400)
        self.assertTrue(self.vault.is_expired())

        supply_before = self.system.registry.total_supply()
        result = self.vault.claim(self.beneficiary)

        self.assertEqual(self.vault.owner, self.beneficiary)
        self.assertEqual(self.vault.beneficiary, UNSET_BENEFICIARY)
        self.assertEqual(self.system.registry.total_supply(), supply_before + 1)

        claim = self.system.registry.get_claim_data(result.token_id)
        self.assertEqual(claim.amount, DEPOSIT)
        self.assertEqual(claim.beneficiary, self.beneficiary)
        self.assertEqual(claim.vault_id, self.vault_id)
        self.assertEqual(self.system.registry.balance_of(self.beneficiary), 1)

        types = [event.type for event in self.system.events.events()]
        self.assertEqual(types[-2:], [EventType.CLAIMED, EventType.CERTIFICATE_MINTED])

    def test_scenario_b_ping_extends_window(self):
        """Test a ping on day 29 keeps the vault alive through day 58 after it"""
        self.clock.advance(29 * DAY)
        self.vault.ping(self.owner)

        self.clock.advance(29 * DAY)
        self.assertFalse(self.vault.is_expired())
        with self.assertRaises(StateError):
            self.vault.claim(self.beneficiary)

        self.clock.advance(DAY)
        self.assertTrue(self.vault.is_expired())

    def test_scenario_c_stranger_cannot_claim(self):
        """Test a third party cannot claim an expired vault"""
        self.clock.advance(2_678_400)

        with self.assertRaises(AuthorizationError):
            self.vault.claim(self.stranger)

        self.assertEqual(self.vault.owner, self.owner)
        self.assertEqual(self.vault.beneficiary, self.beneficiary)
        self.assertEqual(self.vault.balance, DEPOSIT)
        self.assertEqual(self.system.registry.total_supply(), 0)

    def test_scenario_d_overdraw(self):
        """Test withdrawing more than the balance fails"""
        with self.assertRaises(StateError):
            self.vault.withdraw(self.owner, 3_000_000_000_000_000_000)
        self.assertEqual(self.vault.balance, DEPOSIT)

    def test_no_double_claim(self):
        """Test a vault cannot be claimed twice from one expiry"""
        self.clock.advance(THIRTY_DAYS)
        self.vault.claim(self.beneficiary)

        with self.assertRaises(StateError):
            self.vault.claim(self.beneficiary)
        self.clock.advance(THIRTY_DAYS)
        with self.assertRaises(AuthorizationError):
            self.vault.claim(self.beneficiary)
        self.assertEqual(self.system.registry.total_supply(), 1)

    def test_create_vault_validation(self):
        """Test factory rejects self-inheritance and out-of-range timeouts"""
        with self.assertRaises(ValidationError):
            self.system.factory.create_vault(self.owner, self.owner, THIRTY_DAYS)
        with self.assertRaises(ValidationError):
            self.system.factory.create_vault(self.owner, self.beneficiary, 59 * 60)
        self.assertEqual(self.system.factory.get_vaults_for_creator(self.owner), [self.vault_id])

    def test_concurrent_operations_serialize(self):
        """Test concurrent deposits and withdrawals keep the balance exact"""
        def depositor():
            for _ in range(250):
                self.vault.deposit(self.stranger, 2)

        def withdrawer():
            for _ in range(250):
                self.vault.withdraw(self.owner, 1)

        threads = [threading.Thread(target=depositor) for _ in range(2)] + \
                  [threading.Thread(target=withdrawer) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(self.vault.balance, DEPOSIT + 500)
        balances = [e.data['balance'] for e in self.system.events.events(entity_id=self.vault_id)
                    if e.type in (EventType.DEPOSITED, EventType.WITHDRAWN)]
        self.assertEqual(len(balances), 1001)


if __name__ == '__main__':
    unittest.main()
