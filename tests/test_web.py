import base64
import json
import unittest

from cryptography.hazmat.primitives.asymmetric import rsa

from deadman_vault.clock import DAY, ManualClock
from deadman_vault.commands import Command
from deadman_vault.identity import Identity
from deadman_vault.rules import VaultRules
from deadman_vault.system import DeadmanVaultSystem
from web_interface.app import create_app


class TestWebInterface(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.signing_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    def setUp(self):
        """Set up test fixtures"""
        self.clock = ManualClock()
        self.system = DeadmanVaultSystem(clock=self.clock, signing_key=self.signing_key)
        self.client = create_app(self.system).test_client()
        self.alice = Identity().address
        self.bob = Identity().address

    def post_command(self, entity_id, operation, caller, **arguments):
        return self.client.post('/api/commands', json={
            'entity_id': entity_id,
            'operation': operation,
            'arguments': arguments,
            'caller': caller,
        })

    def create_vault(self) -> str:
        response = self.post_command(self.system.factory.address, 'createVault', self.alice,
                                     beneficiary=self.bob, timeout=30 * DAY)
        self.assertEqual(response.status_code, 200)
        return response.get_json()['value']

    def test_config(self):
        """Test config endpoint exposes addresses and rules"""
        data = self.client.get('/api/config').get_json()
        self.assertEqual(data['factory'], self.system.factory.address)
        self.assertEqual(data['registry'], self.system.registry.address)
        self.assertEqual(data['rules']['min_timeout'], 3600)

    def test_vault_lifecycle(self):
        """Test creating, funding and inheriting a vault over HTTP"""
        vault_id = self.create_vault()

        response = self.post_command(vault_id, 'deposit', self.alice, amount=2_300_000_000_000_000_000)
        self.assertEqual(response.get_json(), {'ok': True, 'value': 2_300_000_000_000_000_000})

        vaults = self.client.get(f'/api/creators/{self.alice}/vaults').get_json()
        self.assertEqual(vaults['vaults'], [vault_id])

        self.clock.advance(31 * DAY)
        state = self.client.get(f'/api/vaults/{vault_id}').get_json()
        self.assertTrue(state['expired'])

        response = self.post_command(vault_id, 'claim', self.bob)
        self.assertEqual(response.status_code, 200)
        token_id = response.get_json()['value']['token_id']

        certificate = self.client.get(f'/api/certificates/{token_id}').get_json()
        self.assertEqual(certificate['claim']['amount'], 2_300_000_000_000_000_000)
        self.assertEqual(certificate['claim']['beneficiary'], self.bob)
        metadata = json.loads(base64.b64decode(certificate['token_uri'].split(',', 1)[1]))
        self.assertIn(f"#{token_id}", metadata['name'])

    def test_error_status_codes(self):
        """Test error kinds map onto HTTP status codes"""
        vault_id = self.create_vault()

        response = self.post_command(vault_id, 'ping', self.bob)
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.get_json()['error']['kind'], 'authorization')

        self.assertEqual(self.post_command(vault_id, 'claim', self.bob).status_code, 409)
        self.assertEqual(self.post_command(vault_id, 'deposit', self.alice, amount=-1).status_code, 400)
        self.assertEqual(self.client.get('/api/vaults/0x' + 'ee' * 20).status_code, 404)
        self.assertEqual(self.client.get('/api/certificates/1').status_code, 404)
        self.assertEqual(self.client.post('/api/commands', data="nope").status_code, 400)
        self.assertEqual(self.client.get('/api/creators/bob/vaults').status_code, 400)

    def test_malformed_signature_fields(self):
        """Test non-string signature material is a client error, not a server error"""
        system = DeadmanVaultSystem(
            clock=self.clock,
            rules=VaultRules(require_signed_commands=True),
            signing_key=self.signing_key
        )
        client = create_app(system).test_client()
        envelope = {
            'entity_id': system.factory.address,
            'operation': 'createVault',
            'arguments': {'beneficiary': self.bob, 'timeout': DAY},
            'caller': self.alice,
            'nonce': 0,
            'public_key': "04" * 64,
            'signature': 123,
        }

        response = client.post('/api/commands', json=envelope)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()['error']['kind'], 'validation')

        response = client.post('/api/commands', json=dict(envelope, signature="ab" * 64, public_key=7))
        self.assertEqual(response.status_code, 400)

        response = client.post('/api/commands', json=dict(envelope, signature="ab" * 64))
        self.assertEqual(response.status_code, 403)
        self.assertEqual(system.factory.vault_count(), 0)

    def test_signed_command_over_http(self):
        """Test a signed command is accepted once and its nonce is published"""
        signer = Identity()
        vault_id = self.create_vault()
        self.assertEqual(self.client.get(f'/api/nonces/{signer.address}').get_json()['nonce'], 0)

        deposit = Command(vault_id, 'deposit', {'amount': 5}, signer.address).signed(signer, nonce=0)
        self.assertEqual(self.client.post('/api/commands', json=deposit.to_dict()).status_code, 200)
        replayed = self.client.post('/api/commands', json=deposit.to_dict())
        self.assertEqual(replayed.status_code, 403)

        self.assertEqual(self.client.get(f'/api/vaults/{vault_id}').get_json()['balance'], 5)
        self.assertEqual(self.client.get(f'/api/nonces/{signer.address}').get_json()['nonce'], 1)
        self.assertEqual(self.client.get('/api/nonces/nobody').status_code, 400)

    def test_beneficiary_vaults(self):
        """Test listing inheritable and claimable vaults for a beneficiary"""
        vault_id = self.create_vault()
        url = f'/api/beneficiaries/{self.bob}/vaults'

        self.assertEqual(self.client.get(url).get_json()['vaults'], [vault_id])
        self.assertEqual(self.client.get(url + '?claimable=1').get_json()['vaults'], [])

        self.clock.advance(30 * DAY)
        self.assertEqual(self.client.get(url + '?claimable=true').get_json()['vaults'], [vault_id])

        self.post_command(vault_id, 'claim', self.bob)
        self.assertEqual(self.client.get(url).get_json()['vaults'], [])
        self.assertEqual(self.client.get('/api/beneficiaries/bob/vaults').status_code, 400)

    def test_event_polling(self):
        """Test event polling with a cursor"""
        vault_id = self.create_vault()

        first = self.client.get('/api/events').get_json()
        self.assertEqual([e['type'] for e in first['events']], ['MinterAuthorized', 'VaultCreated'])

        self.post_command(vault_id, 'ping', self.alice)
        self.post_command(vault_id, 'ping', self.bob)  # rejected, no event

        later = self.client.get(f"/api/events?since={first['cursor']}&entity={vault_id}").get_json()
        self.assertEqual([e['type'] for e in later['events']], ['Pinged'])
        self.assertEqual(later['cursor'], first['cursor'] + 1)

        self.assertEqual(self.client.get('/api/events?since=abc').status_code, 400)


if __name__ == '__main__':
    unittest.main()
