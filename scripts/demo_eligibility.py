#!/usr/bin/env python3
"""
Confidential eligibility demo.

1. Alice registers encrypted attributes (country, city, salary, birth year)
2. Bob publishes two applications with plaintext criteria
3. Alice applies to both and decrypts her own verdicts
4. Bob tries to decrypt Alice's verdict and is refused
"""
import sys
import argparse
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from cloak.client.crypto import CryptoClient
from cloak.config import Settings, build_fabric
from cloak.fabric.gateway import DecryptionGateway
from cloak.server.ledger import EligibilityLedger
from cloak.shared import locations
from cloak.shared.errors import Unauthorized
from cloak.shared.utils import Timer


def run_demo(
    fabric_name: str = "simulated",
    key_size: int = 2048,
    country: int = 86,
    city: int = 1001,
    salary: int = 100000,
    birth_year: int = 1995,
):
    """
    Run the register / publish / apply / decrypt flow.
    """
    print("=" * 70)
    print("Cloak - Confidential Eligibility Matching")
    print("=" * 70)
    print(f"\nConfiguration:")
    print(f"  Fabric:     {fabric_name}")
    if fabric_name == "paillier":
        print(f"  Key size:   {key_size} bits")
    print(f"  Applicant:  country={country} ({locations.get_country_name(country) or 'custom'}), "
          f"city={city}, salary={salary:,}, born {birth_year}")

    print("\n[1] Setting up fabric and ledger...")
    with Timer() as t:
        fabric = build_fabric(Settings(fabric=fabric_name, key_size=key_size))
        ledger = EligibilityLedger(fabric)
        gateway = DecryptionGateway(fabric, lambda: ledger.acl)
        alice = CryptoClient(fabric, gateway, ledger.address)
        bob = CryptoClient(fabric, gateway, ledger.address)
    print(f"    Ready in {t.elapsed_ms:.0f}ms (ledger {ledger.address})")

    print("\n[2] Alice registers encrypted attributes...")
    with Timer() as t:
        bundle = alice.encrypt_profile(country, city, salary, birth_year)
        ledger.register_bundle(alice.address, "alice", bundle)
    print(f"    Registered in {t.elapsed_ms:.1f}ms")
    print(f"    Stored country handle: {ledger.get_user(alice.address)[1]}")

    print("\n[3] Bob publishes applications...")
    open_window = ledger.create_application(bob.address, country, 0, 0, 0, 1980, 2000)
    narrow_window = ledger.create_application(bob.address, country, 0, 0, 0, 1996, 2000)
    for app_id in (open_window, narrow_window):
        print(f"    #{app_id}: {ledger.get_application(app_id)[2:]}")

    print("\n[4] Alice applies and decrypts...")
    for app_id in (open_window, narrow_window):
        with Timer() as t:
            handle = ledger.submit_application(alice.address, app_id)
        verdict = alice.decrypt_bool(handle)
        print(f"    #{app_id}: {handle} -> {verdict} ({t.elapsed_ms:.1f}ms)")

    print("\n[5] Bob tries to decrypt Alice's verdict...")
    try:
        bob.decrypt_bool(ledger.get_application_result(open_window, alice.address))
        print("    UNEXPECTED: decryption succeeded")
    except Unauthorized as e:
        print(f"    Refused: {e}")

    print("\n" + "=" * 70)
    print(f"Ledger block: {ledger.block}, events: {len(ledger.events())}")
    print("=" * 70)


def main():
    parser = argparse.ArgumentParser(
        description="Confidential eligibility matching demo",
    )
    parser.add_argument(
        "--fabric",
        choices=["simulated", "paillier"],
        default="simulated",
        help="Ciphertext fabric to use",
    )
    parser.add_argument(
        "--key-size",
        type=int,
        default=2048,
        help="Paillier key size in bits",
    )
    parser.add_argument("--country", type=int, default=86)
    parser.add_argument("--city", type=int, default=1001)
    parser.add_argument("--salary", type=int, default=100000)
    parser.add_argument("--birth-year", type=int, default=1995)

    args = parser.parse_args()

    run_demo(
        fabric_name=args.fabric,
        key_size=args.key_size,
        country=args.country,
        city=args.city,
        salary=args.salary,
        birth_year=args.birth_year,
    )


if __name__ == "__main__":
    main()
