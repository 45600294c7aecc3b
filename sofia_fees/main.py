import logging
import threading
import time

from . import config
from .analytics import AnalyticsEngine
from .block_time import BlockTimeResolver, TimestampStore
from .contract_state import ContractStateReader
from .event_scanner import EventScanner
from .http_helper import QueueConfig, RequestQueue
from .rpc import RpcClient

logger = logging.getLogger(__name__)


def _all_resolved(events) -> bool:
    return all(e.timestamp > 0 for e in events)


class FeeDashboard:
    """
    Polling driver: fetch -> compute (totals), then resolve timestamps ->
    compute again (time windows). Keeps the last good data on failure.
    """

    def __init__(self, scanner, engine=None, contract_reader=None, clock=time.time):
        self.scanner = scanner
        self.engine = engine or AnalyticsEngine()
        self.contract_reader = contract_reader
        self._clock = clock
        self._refreshing = threading.Lock()

        self.data = None
        self.error = None
        self.timestamps_resolved = False
        self.contract_state = None
        self.contract_error = None
        self.last_refresh = None

    def refresh(self) -> bool:
        """Run one refresh cycle. Returns False if one was already running."""
        if not self._refreshing.acquire(blocking=False):
            logger.info("Refresh already in progress, skipping")
            return False
        try:
            self._refresh_events()
            if self.contract_reader is not None:
                self.refresh_contract_state()
            self.last_refresh = int(self._clock())
            return True
        finally:
            self._refreshing.release()

    def _refresh_events(self):
        try:
            # Phase 1: block-ordered totals, no timestamps needed
            events = self.scanner.fetch()
            self.data = self.engine.compute_all(events, now=int(self._clock()))
            self.timestamps_resolved = _all_resolved(events)

            # Phase 2: back-fill timestamps, then the time windows become meaningful
            updated = self.scanner.resolve_timestamps()
            if updated is not None:
                self.data = self.engine.compute_all(updated, now=int(self._clock()))
                self.timestamps_resolved = _all_resolved(updated)
            self.error = None
        except Exception as e:
            logger.error(f"Fee data refresh failed: {e}")
            self.error = str(e) or e.__class__.__name__

    def refresh_contract_state(self):
        try:
            self.contract_state = self.contract_reader.read()
            self.contract_error = None
        except Exception as e:
            logger.error(f"Contract state refresh failed: {e}")
            self.contract_error = str(e) or e.__class__.__name__

    def run(self, interval=None, stop_event=None, on_update=None):
        """Refresh now and every `interval` seconds until stop_event is set."""
        interval = config.REFRESH_INTERVAL if interval is None else interval
        stop_event = stop_event or threading.Event()
        while not stop_event.is_set():
            self.refresh()
            if on_update is not None:
                on_update(self)
            stop_event.wait(interval)


def build_dashboard(
    rpc_url=None,
    contract_address=None,
    deploy_block=None,
    chunk_size=None,
    timestamp_cache_path=None,
    queue_config=None,
    with_contract_state=True,
):
    """Wire queue -> client -> resolver -> scanner -> dashboard."""
    queue = RequestQueue(queue_config or QueueConfig.from_env())
    client = RpcClient(rpc_url or config.RPC_URL, queue)
    store = TimestampStore(timestamp_cache_path or config.TIMESTAMP_CACHE_PATH)
    resolver = BlockTimeResolver(client, store)
    scanner = EventScanner(
        client,
        resolver,
        contract_address=contract_address,
        deploy_block=deploy_block,
        chunk_size=chunk_size,
    )
    reader = ContractStateReader(client, contract_address) if with_contract_state else None
    return FeeDashboard(scanner, AnalyticsEngine(), reader)
