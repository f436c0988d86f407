import sys
from pathlib import Path

import pytest

# Ensure the flat modules are importable when running pytest from the repo root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import config  # noqa: E402


@pytest.fixture(autouse=True)
def clear_settings_cache(monkeypatch):
    # Keep a developer's local .env out of the test environment.
    monkeypatch.setattr(config, "load_dotenv", lambda *args, **kwargs: False)
    config.get_settings.cache_clear()
    yield
    config.get_settings.cache_clear()
