from __future__ import annotations

import pytest

from compass.core.config import AppConfig
from tests.fakes import make_config


@pytest.fixture
def app_config() -> AppConfig:
    return make_config()
