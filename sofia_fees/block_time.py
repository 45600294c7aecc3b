"""
block_time.py — block number -> approximate UNIX timestamp.

Two real block headers (earliest relevant block, chain head) give a linear
seconds-per-block rate; everything in between is interpolated. Good enough
for day bucketing, not for anything consensus-critical.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Dict, Iterable, NamedTuple, Optional

logger = logging.getLogger(__name__)

# Chain must move at least this far past the last calibration before we pay
# for a new head fetch
RECALIBRATE_AFTER_BLOCKS = 1000


class CalibrationError(RuntimeError):
    """resolve() called for an unknown block before any calibration"""


class CalibrationPoint(NamedTuple):
    block_number: int
    timestamp: int


# ----------------------
# Persisted timestamps ([["<block>", ts], ...] JSON)
# ----------------------
class TimestampStore:
    def __init__(self, path: str | None = None):
        self.path = path

    def load(self) -> Dict[int, int]:
        if not self.path or not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r") as f:
                entries = json.load(f)
            if not isinstance(entries, list):
                raise ValueError("expected a list of [block, timestamp] pairs")
            out: Dict[int, int] = {}
            for entry in entries:
                if not isinstance(entry, list) or len(entry) != 2:
                    continue
                block_str, ts = entry
                if isinstance(block_str, str) and isinstance(ts, int) and ts > 0:
                    out[int(block_str)] = ts
            logger.info(f"Loaded {len(out)} cached block timestamps from {self.path}")
            return out
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load timestamp cache {self.path} ({e}), starting fresh")
            return {}

    def save(self, timestamps: Dict[int, int]) -> None:
        if not self.path:
            return
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            entries = [[str(bn), ts] for bn, ts in sorted(timestamps.items()) if ts > 0]
            with open(self.path, "w") as f:
                json.dump(entries, f)
        except OSError as e:
            logger.warning(f"Failed to persist timestamp cache {self.path}: {e}")


class BlockTimeResolver:
    def __init__(self, client, store: TimestampStore | None = None):
        self.client = client
        self.store = store or TimestampStore()
        self._known: Dict[int, int] = self.store.load()
        self.earliest: Optional[CalibrationPoint] = None
        self.latest: Optional[CalibrationPoint] = None
        self.seconds_per_block = 1.0

    @property
    def calibrated(self) -> bool:
        return self.latest is not None

    @property
    def cache_size(self) -> int:
        return len(self._known)

    def _block_timestamp(self, block_number: int) -> int:
        ts = self._known.get(block_number)
        if ts is None:
            ts = self.client.get_block(block_number)["timestamp"]
            self._known[block_number] = ts
        return ts

    def calibrate(self, earliest_block: int, latest_block: int) -> None:
        if (
            self.calibrated
            and self.earliest.block_number == earliest_block
            and latest_block - self.latest.block_number < RECALIBRATE_AFTER_BLOCKS
        ):
            return

        earliest_ts = self._block_timestamp(earliest_block)
        if latest_block == earliest_block:
            latest_ts = earliest_ts
        else:
            latest_ts = self.client.get_block(latest_block)["timestamp"]
            self._known[latest_block] = latest_ts

        span = latest_block - earliest_block
        self.seconds_per_block = (latest_ts - earliest_ts) / span if span != 0 else 1.0
        self.earliest = CalibrationPoint(earliest_block, earliest_ts)
        self.latest = CalibrationPoint(latest_block, latest_ts)
        logger.info(
            f"Calibrated blocks {earliest_block:,} -> {latest_block:,}: "
            f"{self.seconds_per_block:.4f} s/block"
        )

    def resolve(self, block_number: int) -> int:
        ts = self._known.get(block_number)
        if ts is not None:
            return ts
        if not self.calibrated:
            raise CalibrationError(f"cannot resolve block {block_number}: resolver is not calibrated")
        ref = self.latest
        return int(round(ref.timestamp - (ref.block_number - block_number) * self.seconds_per_block))

    def resolve_many(self, block_numbers: Iterable[int]) -> Dict[int, int]:
        out: Dict[int, int] = {}
        for bn in block_numbers:
            if bn in out:
                continue
            out[bn] = self.resolve(bn)
        self._known.update(out)
        self.store.save(self._known)
        return out
