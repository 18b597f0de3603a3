"""Capability policy: which tools may run in each operating mode.

Policy rules:
- `act` mode has no restriction.
- `plan` (investigation) mode only allows tools whose catalog entry declares
  them plan-safe. Tools declared unsafe, tools that declare nothing, and
  tools missing from the catalog are all blocked (fail closed).

The allow/block sets are derived from the catalog on each access so tools
discovered after construction are classified too.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..core.errors import ValidationError
from ..core.types import Mode
from .catalog import ToolCatalog


@dataclass(frozen=True, slots=True)
class PolicyDecision:
    allowed: bool
    reason: str | None = None


ALLOWED = PolicyDecision(allowed=True)


class CapabilityPolicy:
    def __init__(self, catalog: ToolCatalog) -> None:
        self._catalog = catalog

    @property
    def catalog(self) -> ToolCatalog:
        return self._catalog

    @property
    def plan_allowed(self) -> set[str]:
        return {s.name for s in self._catalog.specs() if s.plan_safe is True}

    @property
    def plan_blocked(self) -> set[str]:
        return {s.name for s in self._catalog.specs() if s.plan_safe is not True}

    def validate(self, tool_name: str, mode: Mode) -> PolicyDecision:
        if mode != "plan":
            return ALLOWED

        spec = self._catalog.get(tool_name)
        if spec is None:
            return PolicyDecision(
                False,
                f"Tool '{tool_name}' is not a known tool. Unknown tools are not allowed in Plan Mode.",
            )
        if spec.plan_safe is not True:
            return PolicyDecision(
                False,
                f"Tool '{tool_name}' is not allowed in Plan Mode. "
                "Plan Mode only allows read-only investigation tools.",
            )
        return ALLOWED

    def check(self, tool_name: str, mode: Mode) -> None:
        """Raise ValidationError if the tool may not run in `mode`."""

        decision = self.validate(tool_name, mode)
        if not decision.allowed:
            raise ValidationError(tool_name, decision.reason or "blocked by policy")
