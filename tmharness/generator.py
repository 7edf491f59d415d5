"""Randomised per-key register workload.

Workers are split into key groups. A group works on one key at a time: its
first ``readers`` workers only read, the rest pick writes and compare-and-sets
at random. After ``ops_per_key`` operations the group moves on to a fresh key,
so the checker can verify each key's history on its own. Each worker owns its
random generator; no randomness is shared between threads.
"""

from __future__ import annotations

import itertools
import random
import threading
from dataclasses import dataclass, replace
from typing import Callable, Iterator, List, Optional, Tuple

from tmharness.errors import ConfigurationError
from tmharness.types import OpFunction, Operation, OpType

VALUE_RANGE: int = 10


def r(rng: random.Random) -> Operation:
    return Operation(OpType.INVOKE, OpFunction.READ)


def w(rng: random.Random) -> Operation:
    return Operation(OpType.INVOKE, OpFunction.WRITE, value=rng.randrange(VALUE_RANGE))


def cas(rng: random.Random) -> Operation:
    return Operation(OpType.INVOKE, OpFunction.CAS, value=(rng.randrange(VALUE_RANGE), rng.randrange(VALUE_RANGE)))


MIX: Tuple[Callable[[random.Random], Operation], ...] = (w, cas)


@dataclass(frozen=True)
class WorkloadConfig:
    """Shape of the workload.

    Attributes:
        group_size: Workers sharing one key.
        readers: Workers per group reserved for reads.
        ops_per_key: Operations issued against a key before moving on.
        stagger_s: Mean pause before each operation, in seconds.
    """

    group_size: int
    readers: int
    ops_per_key: int = 100
    stagger_s: float = 0.5

    def __post_init__(self) -> None:
        if self.group_size < 1:
            raise ConfigurationError("group_size must be positive")
        if not 0 <= self.readers <= self.group_size:
            raise ConfigurationError("readers must be between 0 and group_size")
        if self.ops_per_key < 1:
            raise ConfigurationError("ops_per_key must be positive")
        if self.stagger_s < 0:
            raise ConfigurationError("stagger_s must not be negative")

    @classmethod
    def for_cluster(cls, n: int, *, ops_per_key: int = 100, stagger_s: float = 0.5) -> "WorkloadConfig":
        """``2n`` workers per key, ``n`` of them reserved for reads."""
        return cls(group_size=2 * n, readers=n, ops_per_key=ops_per_key, stagger_s=stagger_s)


class KeySource:
    """Thread-safe supply of unused keys."""

    def __init__(self, keys: Optional[Iterator[int]] = None) -> None:
        self._keys = keys if keys is not None else itertools.count()
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            return next(self._keys)


class KeyGroup:
    """Workers sharing the current key."""

    def __init__(self, config: WorkloadConfig, keys: KeySource) -> None:
        self.config = config
        self._keys = keys
        self._lock = threading.Lock()
        self._key = keys.next()
        self._issued = 0

    def claim(self) -> int:
        """Reserve one operation slot and return the key it targets."""
        with self._lock:
            if self._issued >= self.config.ops_per_key:
                self._key = self._keys.next()
                self._issued = 0
            self._issued += 1
            return self._key

    @property
    def key(self) -> int:
        with self._lock:
            return self._key


class WorkerStream:
    """The operation stream seen by one worker thread."""

    def __init__(self, group: KeyGroup, slot: int, rng: Optional[random.Random] = None) -> None:
        self.group = group
        self.slot = slot
        self.rng = rng or random.Random()

    @property
    def reader(self) -> bool:
        return self.slot < self.group.config.readers

    def next_op(self) -> Operation:
        """Build the next invocation for this worker."""
        maker = r if self.reader else self.rng.choice(MIX)
        op = maker(self.rng)
        return replace(op, key=self.group.claim())

    def pause(self) -> float:
        """Seconds to wait before the next operation."""
        return self.rng.uniform(0, 2 * self.group.config.stagger_s)


class OperationGenerator:
    """Hands out one :class:`WorkerStream` per worker thread."""

    def __init__(self, config: WorkloadConfig, concurrency: int, keys: Optional[KeySource] = None) -> None:
        if concurrency < config.group_size or concurrency % config.group_size:
            raise ConfigurationError(
                f"concurrency {concurrency} must be a positive multiple of the key group size {config.group_size}"
            )
        self.config = config
        self.concurrency = concurrency
        self.keys = keys or KeySource()
        self.groups: List[KeyGroup] = [KeyGroup(config, self.keys) for _ in range(concurrency // config.group_size)]

    def stream(self, thread: int, rng: Optional[random.Random] = None) -> WorkerStream:
        """Return the stream for worker *thread* (0-based)."""
        if not 0 <= thread < self.concurrency:
            raise IndexError(f"thread {thread} outside concurrency {self.concurrency}")
        group, slot = divmod(thread, self.config.group_size)
        return WorkerStream(self.groups[group], slot, rng)
