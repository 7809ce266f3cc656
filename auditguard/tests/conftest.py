# auditguard/tests/conftest.py
import asyncio
import os
import sys
import pathlib
import tempfile

# Project root on sys.path (auditguard/tests -> auditguard -> root: parents[2])
ROOT = pathlib.Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT))

# Importing auditguard.main builds a module-level app; keep its files out of the repo.
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="auditguard-test-"))
os.environ.setdefault("ALERT_CONSOLE_ENABLED", "false")

import pytest

from auditguard.alerts import AlertConfig, AlertManager
from auditguard.ledger import IntegrityLedger


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSink:
    def __init__(self, name: str = "recording", ok: bool = True):
        self.name = name
        self.ok = ok
        self.alerts = []

    async def send(self, alert) -> bool:
        self.alerts.append(alert)
        return self.ok


class FakeTransport:
    """SIEM transport stand-in: records payloads, answers with `ok`."""

    def __init__(self, ok: bool = True):
        self.ok = ok
        self.payloads = []

    async def send(self, payload: str) -> bool:
        self.payloads.append(payload)
        return self.ok


class GatedTransport(FakeTransport):
    """Holds every send until `gate` is set, like an endpoint that stops answering."""

    def __init__(self, ok: bool = True):
        super().__init__(ok)
        self.gate = asyncio.Event()
        self.started = asyncio.Event()

    async def send(self, payload: str) -> bool:
        self.payloads.append(payload)
        self.started.set()
        await self.gate.wait()
        return self.ok


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(tmp_path):
    return IntegrityLedger(str(tmp_path / "compliance"))


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def alerts(sink, clock):
    return AlertManager(AlertConfig(min_severity="info", cooldown_seconds=300), [sink], clock=clock)
