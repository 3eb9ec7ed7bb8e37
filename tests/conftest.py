from __future__ import annotations

import logging
import sys
from typing import Any, Iterator
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


CONFIG_ENV_VARS = (
    "AZURE_IDP_URL",
    "AZURE_APP_ID",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
    "AZURE_MFA_TOKEN",
    "HTTP_TIMEOUT_SECONDS",
    "HTTP_VERIFY_TLS",
    "MFA_POLL_INTERVAL_SECONDS",
    "MFA_TIMEOUT_SECONDS",
    "DEBUG_CAPTURE_DIR",
    "LOG_LEVEL",
    "LOG_FILE",
)


def pytest_configure(config: Any) -> None:
    config.addinivalue_line(
        "markers",
        "live: integration tests that sign in to a real Azure AD tenant (need AZURE_* credentials)",
    )


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _restore_root_logging() -> Iterator[None]:
    # configure_logging() replaces root handlers; put pytest's back afterwards.
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    for h in handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)
