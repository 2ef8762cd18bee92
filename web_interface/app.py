#!/usr/bin/env python3
"""
Web interface for Deadman Vault
"""

import logging
import os

from flask import Flask, jsonify, request

from deadman_vault.commands import Command
from deadman_vault.errors import DeadmanVaultError, ValidationError
from deadman_vault.rules import VaultRules
from deadman_vault.system import DeadmanVaultSystem

logger = logging.getLogger("deadman_vault.web")

STATUS_BY_KIND = {
    'validation': 400,
    'authorization': 403,
    'not_found': 404,
    'state': 409,
}


def create_app(system: DeadmanVaultSystem = None) -> Flask:
    """Build the Flask app around a vault system (one is created from env if omitted)"""
    app = Flask(__name__)
    if system is None:
        system = DeadmanVaultSystem(rules=VaultRules.from_env())
    app.config['DEADMAN_SYSTEM'] = system

    @app.errorhandler(DeadmanVaultError)
    def handle_core_error(exc):
        return jsonify({'ok': False, 'error': exc.to_dict()}), STATUS_BY_KIND.get(exc.kind, 400)

    @app.route('/api/config')
    def get_config():
        """Factory and registry addresses plus active rules"""
        return jsonify(system.describe())

    @app.route('/api/commands', methods=['POST'])
    def execute_command():
        """Execute a command envelope against a vault, the factory or the registry"""
        command = Command.from_dict(request.get_json(silent=True))
        result = system.execute(command)

        status = 200 if result.ok else STATUS_BY_KIND.get(result.error_kind, 400)
        return jsonify(result.to_dict()), status

    @app.route('/api/vaults/<vault_id>')
    def get_vault(vault_id):
        state = system.vault(vault_id).state()
        logger.debug("Returning state for vault %s", vault_id)
        return jsonify(state.to_dict())

    @app.route('/api/creators/<address>/vaults')
    def get_creator_vaults(address):
        return jsonify({
            'creator': address.lower(),
            'vaults': system.factory.get_vaults_for_creator(address)
        })

    @app.route('/api/beneficiaries/<address>/vaults')
    def get_beneficiary_vaults(address):
        """Vaults naming address as beneficiary; ?claimable=1 keeps only expired ones"""
        claimable = request.args.get('claimable', '').lower() in ('1', 'true', 'yes')
        return jsonify({
            'beneficiary': address.lower(),
            'vaults': system.factory.get_vaults_for_beneficiary(address, expired_only=claimable)
        })

    @app.route('/api/nonces/<address>')
    def get_nonce(address):
        """Nonce the next signed command from address must carry"""
        return jsonify({'caller': address.lower(), 'nonce': system.next_nonce(address)})

    @app.route('/api/certificates/<int:token_id>')
    def get_certificate(token_id):
        registry = system.registry
        return jsonify({
            'token_id': token_id,
            'claim': registry.get_claim_data(token_id).to_dict(),
            'token_uri': registry.token_uri(token_id),
            'attestation': registry.attestation(token_id).hex()
        })

    @app.route('/api/events')
    def get_events():
        """Poll events after a cursor; pass the returned cursor back next time"""
        try:
            since = int(request.args.get('since', 0))
        except ValueError:
            raise ValidationError("'since' must be an integer") from None

        entity = request.args.get('entity')
        events, cursor = system.events.read(since=since, entity_id=entity.lower() if entity else None)
        return jsonify({
            'events': [event.to_dict() for event in events],
            'cursor': cursor
        })

    return app


if __name__ == "__main__":
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    port = int(os.environ.get("PORT", 10000))
    create_app().run(
        host="0.0.0.0",
        port=port,
        debug=False
    )
