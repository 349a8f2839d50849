#!/usr/bin/env python3
"""Print a new RSA signing key for the OIDC provider.

Usage:
    python scripts/genkey.py > signing-key.pem
    export OIDC_PRIVATE_KEY_PATH=signing-key.pem
"""

from sso_bridge.infrastructure.auth.key_manager import generate_private_key_pem


def main() -> None:
    print(generate_private_key_pem(), end="")


if __name__ == "__main__":
    main()
