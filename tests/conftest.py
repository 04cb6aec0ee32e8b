from __future__ import annotations

import pytest
from loguru import logger


@pytest.fixture(autouse=True)
def _quiet_logger():
    # run_cli installs a handler on the captured stderr; drop it afterwards.
    yield
    logger.remove()
