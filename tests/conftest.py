from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Mapping

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))


import pytest

from tracemark.analysis.model import Registry
from tracemark.analysis.registry_loader import load

CACHE_SPEC = """\
# Cache specification

## Requirements

- **SPEC-CACHE-001**: Evict expired cache entries
- **SPEC-CACHE-002**: Report cache hit ratio
  Concerns: OBS

### SPEC-CACHE-003: Encrypt cached secrets
Concerns: SEC

| ID | Description |
| --- | --- |
| SPEC-CACHE-004 | Retry backend fetch on timeout [REL] |
"""

CACHE_SOURCE = """\
pub struct Cache {}

impl Cache {
    pub fn evict(&mut self) {
        // SPEC-CACHE-001: drop entries past their ttl
    }
}
"""

CACHE_TESTS = """\
#[cfg(test)]
mod tests {
    #[test]
    fn evicts_expired_entries() {
        // SPEC-CACHE-001
    }
}
"""


@pytest.fixture
def write_tree(tmp_path: Path) -> Callable[[Mapping[str, str | bytes]], Path]:
    def _write(files: Mapping[str, str | bytes]) -> Path:
        for rel_path, content in files.items():
            target = tmp_path / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                target.write_bytes(content)
            else:
                target.write_text(content, encoding="utf-8")
        return tmp_path

    return _write


@pytest.fixture
def cache_registry() -> Registry:
    return load({"docs/specs/cache.md": CACHE_SPEC})


@pytest.fixture
def cache_project(write_tree) -> Path:
    return write_tree(
        {
            "docs/specs/cache.md": CACHE_SPEC,
            "src/cache.rs": CACHE_SOURCE,
            "src/cache_tests.rs": CACHE_TESTS,
        }
    )
