"""
End-to-end demo: agent -> Paybound gateway -> mock facilitator.

Starts the mock facilitator and the gateway in background threads, then
drives a few payments through the client SDK.
"""

import tempfile
import threading
import time
from pathlib import Path

import uvicorn

from mock_facilitator import app as facilitator_app
from paybound import PayboundClient, PolicyViolationError
from paybound.app import create_app
from paybound.config import GatewayConfig
from paybound.gateway import PaymentGateway

HERE = Path(__file__).resolve().parent


def run(app, port):
    uvicorn.run(app, host="127.0.0.1", port=port, log_level="error")


def main():
    print("🚀 Paybound demo")
    print("=" * 40)

    threading.Thread(target=run, args=(facilitator_app, 8402), daemon=True).start()

    config = GatewayConfig(
        port=4020,
        policy_file=HERE / "policies.yaml",
        upstream_url="http://127.0.0.1:8402",
        ledger_path=str(Path(tempfile.mkdtemp()) / "ledger.sqlite3"),
    )
    gateway = PaymentGateway.from_config(config)
    threading.Thread(target=run, args=(create_app(gateway), config.port), daemon=True).start()
    time.sleep(2)
    print("✅ Facilitator on :8402, gateway on :4020")
    print()

    attempts = [
        ("https://api.weather.com/forecast", 2),
        ("https://api.weather.com/forecast", 10),
        ("https://api.evil.com/drain", 1),
    ]
    with PayboundClient("test-bot") as client:
        for resource, amount in attempts:
            try:
                result = client.verify(resource, amount)
                print(f"✅ ${amount} → {resource}: {result.upstream_response}")
            except PolicyViolationError as e:
                print(f"❌ ${amount} → {resource}: {e.reason}")

        print()
        print("Ledger:")
        for record in client.get_transactions():
            print(f"   {record['policyResult']:5} ${record['amount']:g} {record['resourceUrl']}")
        print()
        print(f"Health: {client.health()}")


if __name__ == "__main__":
    main()
