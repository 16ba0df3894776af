from __future__ import annotations

from typing import Iterator

import pytest

from portalsync.core.config import get_settings
from portalsync.services.telemetry import reset_telemetry


@pytest.fixture(autouse=True)
def _reset_caches() -> Iterator[None]:
    # Settings and telemetry are process-global; isolate every test.
    get_settings.cache_clear()
    reset_telemetry()
    yield
    get_settings.cache_clear()
    reset_telemetry()
