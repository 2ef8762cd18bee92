#!/usr/bin/env python3
"""
Walkthrough of a deadman vault: create, fund, go silent, inherit
"""

from deadman_vault.clock import DAY, ManualClock
from deadman_vault.identity import Identity
from deadman_vault.system import DeadmanVaultSystem

WEI = 10 ** 18


def main():
    print("=" * 60)
    print("DEADMAN VAULT - INHERITANCE DEMO")
    print("=" * 60)
    print()

    clock = ManualClock()
    system = DeadmanVaultSystem(clock=clock)

    alice = Identity()
    bob = Identity()
    print(f"Owner:       {alice.address}")
    print(f"Beneficiary: {bob.address}")
    print()

    print("STEP 1: Creating vault with a 30 day liveness window")
    print("-" * 40)
    vault_id = system.factory.create_vault(alice.address, bob.address, 30 * DAY)
    vault = system.vault(vault_id)
    vault.deposit(alice.address, 2_300_000_000_000_000_000)
    print(f"Vault:   {vault_id}")
    print(f"Balance: {vault.balance / WEI} ETH")
    print()

    print("STEP 2: Owner pings on day 29")
    print("-" * 40)
    clock.advance(29 * DAY)
    vault.ping(alice.address)
    print(f"Expired? {vault.is_expired()}  ({vault.time_remaining() // DAY} days remaining)")
    print()

    print("STEP 3: Owner goes silent for 31 days")
    print("-" * 40)
    clock.advance(31 * DAY)
    print(f"Expired? {vault.is_expired()}")
    print()

    print("STEP 4: Beneficiary claims")
    print("-" * 40)
    result = vault.claim(bob.address)
    claim = system.registry.get_claim_data(result.token_id)
    print(f"New owner:    {vault.owner}")
    print(f"Certificate:  #{result.token_id} for {claim.amount / WEI} ETH")
    print(f"Attestation:  {'valid' if system.registry.verify_attestation(result.token_id) else 'INVALID'}")
    print()

    print("Event log:")
    for event in system.events.events():
        print(f"  {event.sequence:>2} {event.type.value:<18} {event.entity_id[:10]}...")


if __name__ == "__main__":
    main()
