"""Snowflake-style ID generator for order ids and transfer references.

Generates monotonically increasing, unique string IDs with a short type
prefix (ORD_..., PAYOUT_...). Uniqueness across processes relies on
distinct machine ids; DB unique constraints are the final guard.
"""

import os
import threading
import time


class SnowflakeIdGenerator:
    """Simple snowflake ID generator.

    Layout (64 bits):
      - 41 bits: millisecond timestamp (since custom epoch)
      - 10 bits: machine_id (0-1023)
      - 12 bits: sequence (0-4095 per millisecond)
    """

    _EPOCH_MS = 1_700_000_000_000  # 2023-11-14 approx
    _MACHINE_BITS = 10
    _SEQUENCE_BITS = 12
    _MAX_SEQUENCE = (1 << _SEQUENCE_BITS) - 1

    def __init__(self, machine_id: int = 0) -> None:
        if not (0 <= machine_id < (1 << self._MACHINE_BITS)):
            raise ValueError(f"machine_id must be 0-{(1 << self._MACHINE_BITS) - 1}")
        self._machine_id = machine_id
        self._sequence = 0
        self._last_timestamp_ms = -1
        self._lock = threading.Lock()

    def next_int(self) -> int:
        with self._lock:
            ts = self._current_ms()
            if ts == self._last_timestamp_ms:
                self._sequence = (self._sequence + 1) & self._MAX_SEQUENCE
                if self._sequence == 0:
                    ts = self._wait_next_ms(ts)
            else:
                self._sequence = 0

            self._last_timestamp_ms = ts
            return (
                ((ts - self._EPOCH_MS) << (self._MACHINE_BITS + self._SEQUENCE_BITS))
                | (self._machine_id << self._SEQUENCE_BITS)
                | self._sequence
            )

    def _current_ms(self) -> int:
        return int(time.time() * 1000)

    def _wait_next_ms(self, last_ts: int) -> int:
        ts = self._current_ms()
        while ts <= last_ts:
            ts = self._current_ms()
        return ts


# Stateless invocations may run on several hosts; derive the machine id from the pid.
_default_generator = SnowflakeIdGenerator(machine_id=os.getpid() % 1024)


def generate_id(prefix: str = "") -> str:
    """Generate a unique snowflake string ID, optionally prefixed: 'ORD_7123...'."""
    value = str(_default_generator.next_int())
    return f"{prefix}_{value}" if prefix else value


def new_order_id() -> str:
    return generate_id("ORD")


def new_payout_reference(order_id: str) -> str:
    """Transfer reference sent to the gateway; also the webhook idempotency key."""
    return f"PAYOUT_{order_id}_{_default_generator.next_int()}"
