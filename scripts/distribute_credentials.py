#!/usr/bin/env python3
"""
Ask a bootstrap server to distribute client credentials to a cluster.

This script:
1. Builds a credential request naming the bootstrap server and the clients
2. Signs it with the operator's private key
3. Posts it to the bootstrap server's distribute endpoint
4. Prints one line per target and exits non-zero if any target failed
"""

import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from trustboot.exceptions import PartialDistributionError, TransportError
from trustboot.models.config import DistributionSettings
from trustboot.models.credentials import Credentials, Server
from trustboot.models.pki import Key
from trustboot.services.transport import BootstrapClient


def build_request(server: str, clients, public_ip=None) -> Credentials:
    """
    Build the distribution request.

    Args:
        server: Bootstrap server address
        clients: Client addresses
        public_ip: Public IP to embed in the bootstrap server's certificate

    Returns:
        Credential request
    """
    return Credentials(servers=[Server(address=server)], clients=list(clients), public_ip=public_ip)


def main():
    """Main distribution function."""
    import argparse

    parser = argparse.ArgumentParser(description="Distribute client credentials from a bootstrap server")
    parser.add_argument("server", help="Bootstrap server address")
    parser.add_argument("clients", nargs="*", help="Client addresses")
    parser.add_argument("--public-ip", help="Public IP of the bootstrap server")
    parser.add_argument("--user", required=True, help="Basic auth username")
    parser.add_argument("--password", required=True, help="Basic auth password")
    parser.add_argument("--sign-key", type=Path, help="Private key (PEM) signing the request")
    parser.add_argument("--port", type=int, default=7070, help="Server port (default: 7070)")
    parser.add_argument("--scheme", default="http", help="URL scheme (default: http)")
    parser.add_argument("--timeout", type=float, default=30.0, help="Request timeout in seconds (default: 30)")

    args = parser.parse_args()

    signing_key = Key.load(args.sign_key) if args.sign_key else None
    settings = DistributionSettings(scheme=args.scheme, port=args.port, timeout_seconds=args.timeout)
    client = BootstrapClient(settings, signing_key=signing_key)
    request = build_request(args.server, args.clients, args.public_ip)

    print(f"Distributing via {client.base_url(args.server)} to {len(request.targets())} target(s)")
    print()

    try:
        responses = client.distribute_credentials(args.server, request, args.user, args.password)
    except TransportError as e:
        print(f"ERROR: {e}")
        sys.exit(2)
    finally:
        client.close()

    for response in responses.responses:
        print(f"  {response.target}: {response.status_code} {response.status}")

    print()
    try:
        responses.raise_for_failures()
    except PartialDistributionError as e:
        print(f"ERROR: {e}")
        sys.exit(1)
    print("All targets succeeded")


if __name__ == "__main__":
    main()
