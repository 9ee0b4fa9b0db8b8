# tests/conftest.py
"""
Shared fixtures and sample scripts for the canopy test suite.
"""

import pytest

from canopy.hooks import HookRegistry


# ═══════════════════════════════════════════════════════════════════════
# Sample scripts
# ═══════════════════════════════════════════════════════════════════════

GRADE_SCRIPT = """\
def grade(score)
  if score >= 90
    "A"
  elsif score >= 75
    "B"
  else
    "C"
  end
end

[95, 80].map { |s| grade(s) }
"""

CLASSIFY_SCRIPT = """\
results = []
values.each do |v|
  case v
  when Integer then results << "int"
  when String, Array then results << "other"
  end
end
results
"""

LOOP_SCRIPT = """\
i = 0
total = 0
while i < limit
  total += i if i.even?
  i += 1
end
total
"""

FAULTY_SCRIPT = """\
x = 1
if x > 0
  raise "boom"
end
"""


# ═══════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════

@pytest.fixture
def registry():
    """A fresh registry, independent of the process-wide default."""
    return HookRegistry()


@pytest.fixture
def session_registry(registry):
    """A fresh registry with one session already pushed."""
    registry.push()
    yield registry
    if registry.active:
        registry.pop()
