#!/usr/bin/env python3
"""
event_scanner.py — incremental TransactionForwarded scanner for the fee proxy.

- Streams TransactionForwarded logs with eth_getLogs in fixed block windows.
- Keeps an append-only in-memory ledger sorted by block number.
- Re-scans only blocks past the cursor on each fetch().
- Timestamps are back-filled separately (resolve_timestamps) so totals can be
  shown before any block header has been fetched.

Public API:
    scanner = EventScanner(client, resolver)
    events = scanner.fetch()                 # timestamp == 0 on new events
    events = scanner.resolve_timestamps()    # None if nothing changed
"""
from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass
from typing import List, Optional

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from . import config
from .rpc import MalformedResponseError, _int

logger = logging.getLogger(__name__)

TX_FORWARDED_SIGNATURE = "TransactionForwarded(string,address,uint256,uint256,uint256)"
TX_FORWARDED_TOPIC0 = Web3.to_hex(Web3.keccak(text=TX_FORWARDED_SIGNATURE))
# Non-indexed args, in order, as they sit in the log's data
TX_FORWARDED_DATA_TYPES = ["string", "uint256", "uint256", "uint256"]

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


# ----------------------
# Data model
# ----------------------

@dataclass(frozen=True)
class Event:
    operation: str
    user: str
    sofia_fee: int          # wei
    multi_vault_value: int  # wei
    total_received: int     # wei
    block_number: int
    tx_hash: str
    log_index: int = 0
    timestamp: int = 0      # unix seconds, 0 until resolved

    @property
    def key(self) -> tuple[str, int]:
        return (self.tx_hash.lower(), self.log_index)


# ----------------------
# Decoding
# ----------------------

def decode_transaction_forwarded(raw: dict) -> Event:
    """
    Raw eth_getLogs entry -> Event.

    A log without blockNumber/transactionHash is a malformed response. Any
    argument that cannot be decoded falls back to "unknown" / zero address / 0
    so one odd log never sinks a scan.
    """
    try:
        block_number = _int(raw["blockNumber"])
        tx_hash = str(raw["transactionHash"])
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedResponseError(f"log without usable blockNumber/transactionHash: {raw!r}") from e

    try:
        log_index = _int(raw.get("logIndex") or "0x0")
    except (TypeError, ValueError):
        log_index = 0

    user = ZERO_ADDRESS
    topics = raw.get("topics") or []
    if len(topics) > 1:
        try:
            user = Web3.to_checksum_address("0x" + str(topics[1])[-40:])
        except ValueError:
            logger.warning(f"Undecodable user topic in tx {tx_hash}, using zero address")
    else:
        logger.warning(f"Log in tx {tx_hash} has no user topic, using zero address")

    operation, sofia_fee, multi_vault_value, total_received = "unknown", 0, 0, 0
    data_hex = raw.get("data") or "0x"
    try:
        data = bytes.fromhex(data_hex[2:] if data_hex.startswith("0x") else data_hex)
        operation, sofia_fee, multi_vault_value, total_received = abi_decode(TX_FORWARDED_DATA_TYPES, data)
    except (DecodingError, ValueError, TypeError, AttributeError) as e:
        logger.warning(f"Undecodable TransactionForwarded data in tx {tx_hash} ({e}), using defaults")

    return Event(
        operation=operation,
        user=user,
        sofia_fee=int(sofia_fee),
        multi_vault_value=int(multi_vault_value),
        total_received=int(total_received),
        block_number=block_number,
        tx_hash=tx_hash,
        log_index=log_index,
    )


def chunk_ranges(start_block: int, end_block: int, chunk_size: int) -> List[tuple[int, int]]:
    """Inclusive [lo, hi] windows of at most chunk_size blocks covering start..end."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    out = []
    cur = start_block
    while cur <= end_block:
        hi = min(cur + chunk_size - 1, end_block)
        out.append((cur, hi))
        cur = hi + 1
    return out


# ----------------------
# Scanner
# ----------------------

class EventScanner:
    def __init__(
        self,
        client,
        resolver,
        contract_address: str | None = None,
        deploy_block: int | None = None,
        chunk_size: int | None = None,
    ):
        self.client = client
        self.resolver = resolver
        self.contract_address = (contract_address or config.SOFIA_PROXY_ADDRESS).lower()
        self.deploy_block = config.DEPLOY_BLOCK if deploy_block is None else deploy_block
        self.chunk_size = chunk_size or config.BLOCK_CHUNK

        self._events: List[Event] = []
        self._seen: set[tuple[str, int]] = set()
        self._last_scanned_block: Optional[int] = None
        self._busy = threading.Lock()

    @property
    def events(self) -> List[Event]:
        """Copy of the ledger, ascending by block."""
        return list(self._events)

    @property
    def last_scanned_block(self) -> Optional[int]:
        return self._last_scanned_block

    def reset(self) -> None:
        with self._busy:
            self._events = []
            self._seen = set()
            self._last_scanned_block = None

    def fetch(self) -> List[Event]:
        """
        Scan blocks past the cursor and return the ledger.

        A fetch overlapping another fetch/resolve on this scanner returns the
        current ledger without scanning.
        """
        if not self._busy.acquire(blocking=False):
            logger.info("Scan already in progress, skipping")
            return self.events
        try:
            self._scan()
            return self.events
        finally:
            self._busy.release()

    def _scan(self) -> None:
        head = self.client.block_number()
        if self._last_scanned_block is not None and head <= self._last_scanned_block:
            return

        lo = self.deploy_block
        if self._last_scanned_block is not None:
            lo = max(lo, self._last_scanned_block + 1)
        windows = chunk_ranges(lo, head, self.chunk_size)
        logger.info(f"Scanning blocks {lo:,} -> {head:,} in {len(windows)} windows")

        found = 0
        for a, b in windows:
            raw_logs = self.client.get_logs(self.contract_address, [TX_FORWARDED_TOPIC0], a, b)
            # Decode the whole window before touching the ledger
            new_events = [decode_transaction_forwarded(lg) for lg in raw_logs]
            found += self._append(new_events)
            self._advance_cursor(b)
            logger.debug(f"  [{a:,} - {b:,}] -> {len(raw_logs)} logs")

        self._advance_cursor(head)
        logger.info(f"Scan complete: {found} new events, ledger size {len(self._events)}")

    def _append(self, new_events: List[Event]) -> int:
        fresh = []
        for e in new_events:
            if e.key in self._seen:
                continue
            self._seen.add(e.key)
            fresh.append(e)
        if fresh:
            # Readers may hold the old list; the merged ledger replaces it whole
            self._events = sorted(self._events + fresh, key=lambda e: (e.block_number, e.log_index))
        return len(fresh)

    def _advance_cursor(self, block: int) -> None:
        if self._last_scanned_block is None or block > self._last_scanned_block:
            self._last_scanned_block = block

    def resolve_timestamps(self) -> Optional[List[Event]]:
        """
        Back-fill timestamp == 0 events. Returns the updated ledger, or None if
        nothing changed (including when another scan/resolve is running).
        """
        if not self._busy.acquire(blocking=False):
            logger.info("Scan in progress, skipping timestamp resolution")
            return None
        try:
            unresolved = [e.block_number for e in self._events if e.timestamp == 0]
            if not unresolved:
                return None

            head = self.client.block_number()
            self.resolver.calibrate(self._events[0].block_number, head)
            timestamps = self.resolver.resolve_many(unresolved)

            updated = 0
            resolved = []
            for e in self._events:
                ts = timestamps.get(e.block_number, 0) if e.timestamp == 0 else 0
                if ts > 0:
                    e = dataclasses.replace(e, timestamp=ts)
                    updated += 1
                resolved.append(e)
            self._events = resolved
            logger.info(f"Resolved timestamps for {updated}/{len(unresolved)} events")
            return self.events if updated else None
        finally:
            self._busy.release()
