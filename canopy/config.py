"""
canopy/config.py
================

Configuration for coverage sessions.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, List, Mapping, Optional

__all__ = ["CoverageConfig"]


@dataclass
class CoverageConfig:
    """Tuning knobs for a coverage session.

    ``reevaluate_case_operand`` embeds a fresh copy of a ``case`` operand
    into every ``when`` test instead of evaluating it once into a hidden
    local.  ``max_loop_iterations`` bounds the total number of
    ``while``/``until`` iterations a script may run.
    """
    file_tag: str = "-"
    reevaluate_case_operand: bool = False
    strict_parse: bool = False
    max_loop_iterations: Optional[int] = None

    def validate(self) -> List[str]:
        """Return a list of validation warnings (empty if valid)."""
        warnings: List[str] = []
        if not self.file_tag:
            warnings.append("file_tag must not be empty")
        if self.max_loop_iterations is not None and self.max_loop_iterations <= 0:
            warnings.append("max_loop_iterations must be positive")
        return warnings

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "CoverageConfig":
        """Build a config from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in values.items() if k in known})
