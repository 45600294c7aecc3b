"""
Pytest fixtures for sofia_fees tests: an in-memory chain node and a manual clock.
No test touches the network.
"""

from __future__ import annotations

import pytest
import requests
from eth_abi import encode as abi_encode

from sofia_fees.event_scanner import TX_FORWARDED_DATA_TYPES, TX_FORWARDED_TOPIC0

GENESIS_TS = 1_700_000_000
SECONDS_PER_BLOCK = 2
WEI = 10 ** 18


def make_log(
    block: int,
    fee: int = WEI,
    operation: str = "deposit",
    user: str = "0x00000000000000000000000000000000000000a1",
    multi_vault_value: int = 0,
    total_received: int = 0,
    log_index: int = 0,
    tx_hash: str | None = None,
) -> dict:
    """A raw eth_getLogs entry for TransactionForwarded, hex-encoded like a node returns it."""
    data = abi_encode(TX_FORWARDED_DATA_TYPES, [operation, fee, multi_vault_value, total_received])
    return {
        "address": "0x26f81d723ad1648194faa4b7e235105fd1212c6c",
        "blockNumber": hex(block),
        "transactionHash": tx_hash or "0x" + f"{block:064x}",
        "logIndex": hex(log_index),
        "topics": [TX_FORWARDED_TOPIC0, "0x" + "0" * 24 + user[2:].lower()],
        "data": "0x" + data.hex(),
    }


class FakeChain:
    """Stands in for RpcClient; records every call."""

    def __init__(self, head: int = 0, logs=None):
        self.head = head
        self.logs = list(logs or [])
        self.calls: list[tuple] = []
        self.fail_ranges: set[tuple[int, int]] = set()
        self.fail_head = False
        self.fail_headers = False

    def block_number(self) -> int:
        self.calls.append(("eth_blockNumber",))
        if self.fail_head:
            raise requests.ConnectionError("node unreachable")
        return self.head

    def get_logs(self, address, topics, from_block, to_block):
        self.calls.append(("eth_getLogs", from_block, to_block))
        if (from_block, to_block) in self.fail_ranges:
            raise requests.ConnectionError(f"reset while fetching [{from_block}, {to_block}]")
        return [lg for lg in self.logs if from_block <= int(lg["blockNumber"], 16) <= to_block]

    def get_block(self, number: int) -> dict:
        self.calls.append(("eth_getBlockByNumber", number))
        if self.fail_headers:
            raise requests.ConnectionError(f"header {number} unavailable")
        return {"number": number, "timestamp": GENESIS_TS + number * SECONDS_PER_BLOCK}

    def calls_of(self, method: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == method]


class ManualClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def clock():
    return ManualClock()
