# scripts/debug_scan.py
import logging

from sofia_fees.config import RPC_URL, SOFIA_PROXY_ADDRESS, DEPLOY_BLOCK
from sofia_fees.main import build_dashboard

def main():
    logging.basicConfig(level=logging.DEBUG, format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")

    print("RPC:", RPC_URL)
    print("Proxy contract:", SOFIA_PROXY_ADDRESS, "deployed at block", DEPLOY_BLOCK)

    dash = build_dashboard(with_contract_state=False)
    scanner = dash.scanner

    events = scanner.fetch()
    print("Events:", len(events), "cursor:", scanner.last_scanned_block)

    resolved = scanner.resolve_timestamps()
    print("Timestamps resolved:", resolved is not None)

    data = dash.engine.compute_all(scanner.events)
    print("All-time fees:", data.all_time.total_fees_formatted, "TRUST over", data.all_time.total_transactions, "tx")

if __name__ == "__main__":
    main()
