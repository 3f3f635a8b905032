# src/planning/base_planner.py — v1
"""Abstract planner interface: instruction text in, Plan out."""

from __future__ import annotations

from abc import ABC, abstractmethod

from pulsecollect.core.models import Plan


class BasePlanner(ABC):
    """Turns a natural-language instruction into a collection plan."""

    @abstractmethod
    async def plan(self, instruction: str) -> Plan:
        """Produce a plan. Implementations must not return partial plans."""
