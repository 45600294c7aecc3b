import logging
import threading
from typing import Optional

import typer

from . import config
from .csv_io import write_activity_csv, write_chart_csv
from .main import FeeDashboard, build_dashboard

app = typer.Typer(help="Sofia fee proxy revenue monitor")

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)


def _print_summary(dash: FeeDashboard) -> None:
    if dash.error:
        print(f"! Last refresh failed: {dash.error} (showing last good data, retrying next cycle)")
    data = dash.data
    if data is None:
        print("No data yet.")
        return

    at = data.all_time
    print(f"\n=== Fee revenue ({at.total_transactions} tx) ===")
    print(f"All time : {at.total_fees_formatted} TRUST fees, "
          f"{at.total_volume_formatted} TRUST received, "
          f"{at.total_multi_vault_value_formatted} TRUST forwarded")
    if not dash.timestamps_resolved:
        print("(timestamps pending, time windows may be incomplete)")
    for label, s in (("7d", data.stats_7d), ("30d", data.stats_30d), ("Total", data.stats_total)):
        print(f"{label:>6}: {s.total_fees_formatted} TRUST over {s.tx_count} tx, {s.unique_wallets} wallets")

    if at.operation_breakdown:
        print("By operation:")
        for op, ops in at.operation_breakdown.items():
            print(f"  {op:<24} {ops.count:>6} tx  {ops.total_fee / 10**18:.4f} TRUST")

    if data.recent_transactions:
        print("Recent:")
        for e in data.recent_transactions[:10]:
            print(f"  #{e.block_number} {e.operation:<20} {e.user} {e.tx_hash[:12]}...")

    if dash.contract_state is not None:
        cs = dash.contract_state
        print(f"Contract: fixed fee {cs.deposit_fixed_fee_formatted} TRUST, "
              f"{cs.deposit_percentage_formatted}% deposit fee, "
              f"balance {cs.contract_balance_formatted} TRUST")
    elif dash.contract_error:
        print(f"! Contract state unavailable: {dash.contract_error}")


@app.command()
def snapshot(
    deploy_block: Optional[int] = typer.Option(None, help="Override DEPLOY_BLOCK"),
    chunk: Optional[int] = typer.Option(None, "--chunk", help="Blocks per eth_getLogs window"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Scan once, resolve timestamps and print the dashboard."""
    _setup_logging(verbose)
    dash = build_dashboard(deploy_block=deploy_block, chunk_size=chunk)
    dash.refresh()
    _print_summary(dash)
    if dash.error:
        raise typer.Exit(code=1)


@app.command()
def watch(
    interval: float = typer.Option(config.REFRESH_INTERVAL, help="Seconds between refreshes"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Poll forever, printing the dashboard after every refresh (Ctrl+C to stop)."""
    _setup_logging(verbose)
    dash = build_dashboard()
    stop = threading.Event()
    try:
        dash.run(interval=interval, stop_event=stop, on_update=_print_summary)
    except KeyboardInterrupt:
        stop.set()
        print("\nStopped.")


@app.command()
def export(
    outdir: str = typer.Option("exports", "--outdir", "-o", help="Directory for CSV files"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Write the 7d/30d/total chart series and recent activity to CSV."""
    _setup_logging(verbose)
    dash = build_dashboard(with_contract_state=False)
    dash.refresh()
    if dash.data is None:
        print(f"Nothing to export: {dash.error}")
        raise typer.Exit(code=1)
    data = dash.data
    written = [
        write_chart_csv(f"{outdir}/chart_7d.csv", data.chart_7d),
        write_chart_csv(f"{outdir}/chart_30d.csv", data.chart_30d),
        write_chart_csv(f"{outdir}/chart_total.csv", data.chart_total),
        write_activity_csv(f"{outdir}/recent_activity.csv", data.recent_transactions),
    ]
    for path in written:
        print(f"Wrote {path}")


@app.command()
def contract(verbose: bool = typer.Option(False, "--verbose", "-v")):
    """Print the proxy's fee configuration and balance."""
    _setup_logging(verbose)
    dash = build_dashboard()
    dash.refresh_contract_state()
    if dash.contract_error:
        print(f"Failed to read contract state: {dash.contract_error}")
        raise typer.Exit(code=1)
    cs = dash.contract_state
    print(f"Deposit fixed fee     : {cs.deposit_fixed_fee_formatted} TRUST")
    print(f"Deposit percentage fee: {cs.deposit_percentage_formatted}%")
    print(f"Max fee percentage    : {cs.max_fee_percentage} / {cs.fee_denominator}")
    print(f"Fee recipient         : {cs.fee_recipient}")
    print(f"MultiVault            : {cs.eth_multi_vault}")
    print(f"Balance               : {cs.contract_balance_formatted} TRUST")


if __name__ == "__main__":
    app()
