"""Nemesis profiles: which fault to inject, and when.

Exactly one profile is active per test. :data:`PROFILES` maps each profile to
a nemesis factory and an activation schedule.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterator, Optional, Protocol, Sequence, Tuple, Union

from tmharness.control import Remote
from tmharness.errors import ConfigurationError
from tmharness.nemesis.base import Nemesis, NoopNemesis
from tmharness.nemesis.clock import DEFAULT_NTP_SERVER, ClockNemesis, clock_ops
from tmharness.nemesis.grudge import GrudgeBuilder, majorities_ring, random_halves, random_node
from tmharness.nemesis.net import IptablesNet, Partitioner
from tmharness.types import Node, OpFunction, Operation, OpType
from tmharness.validators.identity import IdentityAssignment

logger = logging.getLogger(__name__)

Step = Tuple[float, Operation]


class NemesisProfile(Enum):
    """Fault-injection strategies selectable per test."""

    DUPLICATE_IDENTITY_PARTITION = "duplicate-identity-partition"
    HALF_SPLIT = "half-split"
    MAJORITY_RING = "majority-ring"
    SINGLE_NODE_ISOLATION = "single-node-isolation"
    CLOCK_SKEW = "clock-skew"
    NONE = "none"


ALIASES: Dict[str, NemesisProfile] = {
    "twofaced-validators": NemesisProfile.DUPLICATE_IDENTITY_PARTITION,
    "half-partitions": NemesisProfile.HALF_SPLIT,
    "ring-partitions": NemesisProfile.MAJORITY_RING,
    "single-partitions": NemesisProfile.SINGLE_NODE_ISOLATION,
    "clocks": NemesisProfile.CLOCK_SKEW,
}


def parse_profile(name: Union[str, NemesisProfile]) -> NemesisProfile:
    """Resolve a profile name (or one of the legacy aliases)."""
    if isinstance(name, NemesisProfile):
        return name
    key = name.strip().lower().replace("_", "-")
    if key in ALIASES:
        return ALIASES[key]
    try:
        return NemesisProfile(key)
    except ValueError:
        known = ", ".join(p.value for p in NemesisProfile)
        raise ConfigurationError(f"unknown nemesis profile {name!r}; expected one of {known}") from None


# --------------------------------------------------------------------------------------
# Schedules
# --------------------------------------------------------------------------------------


class Schedule(Protocol):
    def steps(self, nodes: Sequence[Node], rng: random.Random) -> Iterator[Step]:  # pragma: no cover
        """Yield ``(seconds to wait, operation to invoke)`` pairs."""


@dataclass(frozen=True)
class StartStop:
    """Wait ``quiet_s``, start the fault, wait ``active_s``, stop it; repeat."""

    quiet_s: float
    active_s: float

    def steps(self, nodes: Sequence[Node], rng: random.Random) -> Iterator[Step]:
        while True:
            yield self.quiet_s, Operation(OpType.INVOKE, OpFunction.START)
            yield self.active_s, Operation(OpType.INVOKE, OpFunction.STOP)


@dataclass(frozen=True)
class Stagger:
    """Emit ops from *source* at random intervals averaging ``mean_s``."""

    mean_s: float
    source: Callable[[Sequence[Node], random.Random], Callable[[], Operation]]

    def steps(self, nodes: Sequence[Node], rng: random.Random) -> Iterator[Step]:
        next_op = self.source(nodes, rng)
        while True:
            yield rng.uniform(0, 2 * self.mean_s), next_op()


@dataclass(frozen=True)
class Never:
    """Never fires."""

    def steps(self, nodes: Sequence[Node], rng: random.Random) -> Iterator[Step]:
        return iter(())


# --------------------------------------------------------------------------------------
# Profile table
# --------------------------------------------------------------------------------------


@dataclass(frozen=True)
class NemesisContext:
    """What the nemesis factories need to know about the test."""

    assignment: IdentityAssignment
    remote: Optional[Remote] = None
    ntp_server: str = DEFAULT_NTP_SERVER

    def require_remote(self) -> Remote:
        if self.remote is None:
            raise ConfigurationError("this nemesis profile needs remote access to the nodes")
        return self.remote


@dataclass(frozen=True)
class ProfileSpec:
    factory: Callable[[NemesisContext], Nemesis]
    schedule: Schedule


@dataclass(frozen=True)
class ActiveNemesis:
    profile: NemesisProfile
    nemesis: Nemesis
    schedule: Schedule


def _duplicate_identity_partitioner(ctx: NemesisContext) -> Nemesis:
    if not ctx.assignment:
        logger.warning("No duplicated validators configured; partitions will leave the cluster whole")
    return Partitioner(GrudgeBuilder(ctx.assignment).build, IptablesNet(ctx.require_remote()))


def _partitioner(grudge_fn: Callable) -> Callable[[NemesisContext], Nemesis]:
    def factory(ctx: NemesisContext) -> Nemesis:
        return Partitioner(grudge_fn, IptablesNet(ctx.require_remote()))

    return factory


def _clock_nemesis(ctx: NemesisContext) -> Nemesis:
    return ClockNemesis(ctx.require_remote(), ctx.ntp_server)


PROFILES: Dict[NemesisProfile, ProfileSpec] = {
    NemesisProfile.DUPLICATE_IDENTITY_PARTITION: ProfileSpec(_duplicate_identity_partitioner, StartStop(0, 5)),
    NemesisProfile.HALF_SPLIT: ProfileSpec(_partitioner(random_halves), StartStop(5, 30)),
    NemesisProfile.MAJORITY_RING: ProfileSpec(_partitioner(majorities_ring), StartStop(5, 30)),
    NemesisProfile.SINGLE_NODE_ISOLATION: ProfileSpec(_partitioner(random_node), StartStop(5, 30)),
    NemesisProfile.CLOCK_SKEW: ProfileSpec(_clock_nemesis, Stagger(5, clock_ops)),
    NemesisProfile.NONE: ProfileSpec(lambda ctx: NoopNemesis(), Never()),
}


def select_profile(name: Union[str, NemesisProfile], context: NemesisContext) -> ActiveNemesis:
    """Instantiate the nemesis and schedule for the named profile."""
    profile = parse_profile(name)
    entry = PROFILES[profile]
    return ActiveNemesis(profile, entry.factory(context), entry.schedule)
