"""Fault injection: partition plans, nemeses and their schedules."""

from __future__ import annotations

from .base import Nemesis, NoopNemesis
from .grudge import Grudge, GrudgeBuilder, complete_grudge, majorities_ring, random_halves, random_node
from .net import IptablesNet, Partitioner
from .clock import ClockNemesis, clock_ops
from .profiles import (
    PROFILES,
    ActiveNemesis,
    NemesisContext,
    NemesisProfile,
    Never,
    Stagger,
    StartStop,
    parse_profile,
    select_profile,
)

__all__ = [
    "Nemesis",
    "NoopNemesis",
    "Grudge",
    "GrudgeBuilder",
    "complete_grudge",
    "majorities_ring",
    "random_halves",
    "random_node",
    "IptablesNet",
    "Partitioner",
    "ClockNemesis",
    "clock_ops",
    "PROFILES",
    "ActiveNemesis",
    "NemesisContext",
    "NemesisProfile",
    "Never",
    "Stagger",
    "StartStop",
    "parse_profile",
    "select_profile",
]
