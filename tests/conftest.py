"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages, and
provides the database and provider fixtures shared across test packages.
"""

import sys
import tempfile
from collections.abc import Generator
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

# Insert local src directory at the beginning of sys.path
# This ensures that the local indexsync package is used, not any installed one
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

# Force reimport of indexsync modules if already imported
for module_name in list(sys.modules.keys()):
    if module_name.startswith("indexsync"):
        del sys.modules[module_name]

from tests.index.fakes import FakeClock, FakeProvider  # noqa: E402

if TYPE_CHECKING:
    from indexsync.index._internal.db import Database
    from indexsync.index.records import SqlRecordStore


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory(ignore_cleanup_errors=True) as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db(temp_dir: Path) -> Generator["Database", None, None]:
    """Create a temporary database with schema."""
    from indexsync.index._internal.db import Database

    db = Database(temp_dir / "test.db")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def record_store(temp_db: "Database") -> "SqlRecordStore":
    from indexsync.index.records import SqlRecordStore

    return SqlRecordStore(temp_db)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
