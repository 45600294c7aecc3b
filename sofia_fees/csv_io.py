import os, csv

from .format import format_trust

CHART_HEADER = ["date", "fees_trust", "cumulative_fees_trust"]

ACTIVITY_HEADER = [
    "block_number", "timestamp", "tx_hash", "operation", "user",
    "sofia_fee_wei", "sofia_fee_trust", "multi_vault_value_wei", "total_received_wei",
]

def write_chart_csv(path: str, points) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(CHART_HEADER)
        for p in points:
            writer.writerow([p.date, f"{p.fees:.6f}", f"{p.cumulative_fees:.6f}"])
    return path

def write_activity_csv(path: str, events) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(ACTIVITY_HEADER)
        for e in events:
            # wei as plain integers so nothing is lost on re-import
            writer.writerow([
                e.block_number, e.timestamp, e.tx_hash, e.operation, e.user,
                e.sofia_fee, format_trust(e.sofia_fee), e.multi_vault_value, e.total_received,
            ])
    return path
