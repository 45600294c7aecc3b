import threading

import pytest

from sofia_fees.block_time import BlockTimeResolver
from sofia_fees.event_scanner import EventScanner
from sofia_fees.main import FeeDashboard, build_dashboard

from conftest import GENESIS_TS, SECONDS_PER_BLOCK, WEI, FakeChain, make_log

HEAD = 1_000_000
NOW = GENESIS_TS + HEAD * SECONDS_PER_BLOCK


def dashboard_for(chain, contract_reader=None):
    scanner = EventScanner(chain, BlockTimeResolver(chain), contract_address="0xabc", deploy_block=0)
    return FeeDashboard(scanner, contract_reader=contract_reader, clock=lambda: NOW)


@pytest.fixture
def busy_chain():
    # one event a day ago, one about ten days ago (2s blocks)
    return FakeChain(head=HEAD, logs=[
        make_log(HEAD - 10 * 43_200, fee=2 * WEI),
        make_log(HEAD - 43_200, fee=WEI),
    ])


def test_two_phase_refresh(busy_chain):
    dash = dashboard_for(busy_chain)
    assert dash.refresh() is True
    assert dash.error is None
    assert dash.timestamps_resolved is True
    assert dash.data.all_time.total_fees == 3 * WEI
    assert dash.data.stats_7d.total_fees == WEI
    assert dash.data.stats_30d.total_fees == 3 * WEI
    assert dash.last_refresh == NOW


def test_failure_keeps_last_good_data(busy_chain):
    dash = dashboard_for(busy_chain)
    dash.refresh()
    good = dash.data

    busy_chain.fail_head = True
    assert dash.refresh() is True
    assert dash.data is good
    assert "node unreachable" in dash.error

    busy_chain.fail_head = False
    dash.refresh()
    assert dash.error is None


def test_first_failure_leaves_no_data():
    chain = FakeChain(head=10)
    chain.fail_head = True
    dash = dashboard_for(chain)
    dash.refresh()
    assert dash.data is None
    assert dash.error


def test_overlapping_refresh_is_skipped(busy_chain):
    dash = dashboard_for(busy_chain)
    dash._refreshing.acquire()
    try:
        assert dash.refresh() is False
    finally:
        dash._refreshing.release()
    assert busy_chain.calls == []


def test_contract_state_error_is_separate(busy_chain):
    class BrokenReader:
        def read(self):
            raise RuntimeError("eth_call reverted")

    dash = dashboard_for(busy_chain, contract_reader=BrokenReader())
    dash.refresh()
    assert dash.error is None
    assert dash.data is not None
    assert dash.contract_error == "eth_call reverted"


def test_run_stops_on_event(busy_chain):
    dash = dashboard_for(busy_chain)
    stop = threading.Event()
    updates = []

    def on_update(d):
        updates.append(len(busy_chain.calls_of("eth_getLogs")))
        if len(updates) == 2:
            stop.set()

    dash.run(interval=0, stop_event=stop, on_update=on_update)
    assert len(updates) == 2
    # second cycle had nothing new to scan
    assert updates[0] > 0
    assert updates[1] == updates[0]


def test_build_dashboard_wiring(tmp_path):
    dash = build_dashboard(
        rpc_url="http://node.test",
        contract_address="0x26F81d723Ad1648194FAA4b7E235105Fd1212c6c",
        deploy_block=123,
        chunk_size=1000,
        timestamp_cache_path=str(tmp_path / "ts.json"),
    )
    scanner = dash.scanner
    assert scanner.deploy_block == 123
    assert scanner.chunk_size == 1000
    assert scanner.client is scanner.resolver.client
    assert scanner.client.rpc_url == "http://node.test"
    assert dash.contract_reader.client is scanner.client


def test_empty_ledger_counts_as_resolved():
    dash = dashboard_for(FakeChain(head=1000))
    dash.refresh()
    assert dash.error is None
    assert dash.timestamps_resolved is True


def test_resolved_flag_cleared_when_new_events_stay_unresolved(busy_chain):
    dash = dashboard_for(busy_chain)
    dash.refresh()
    assert dash.timestamps_resolved is True

    # far enough past the last calibration to need a fresh head header
    busy_chain.head = HEAD + 5_000
    busy_chain.logs.append(make_log(HEAD + 4_000, fee=WEI))
    busy_chain.fail_headers = True
    dash.refresh()

    assert "unavailable" in dash.error
    assert dash.timestamps_resolved is False
    # phase 1 still published the new totals
    assert dash.data.all_time.total_fees == 4 * WEI
