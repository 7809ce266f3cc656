import asyncio
import json

import httpx
import pytest

from auditguard.siem import (
    FailureStore,
    HttpTransport,
    SIEMConfig,
    SIEMEvent,
    SIEMExporter,
    UdpTransport,
    build_transport,
    format_cef,
    format_leef,
    format_splunk_hec,
    format_syslog,
)

from .conftest import FakeTransport, GatedTransport

CFG = SIEMConfig(enabled=True, min_severity="info", retry_attempts=1, retry_backoff_ms=0)


def _event(severity: str = "critical", event_type: str = "breach_detected", **details) -> SIEMEvent:
    return SIEMEvent(
        event_type=event_type,
        event_name="Secrets Leaked",
        severity=severity,
        source="breach-detector",
        message="test",
        details=details,
        timestamp="2026-10-19T10:00:00+00:00",
    )


def _exporter(transport=None, store=None, **overrides) -> SIEMExporter:
    cfg = SIEMConfig(**{**CFG.__dict__, **overrides})
    return SIEMExporter(cfg, transport=transport or FakeTransport(), failure_store=store)


async def _no_sleep(sec):
    return None


# ---- formats ------------------------------------------------------------------

def test_cef_critical_maps_to_10():
    line = format_cef(_event(), CFG)
    header = line.split("|")
    assert header[0] == "CEF:0"
    assert header[4] == "breach_detected"
    assert line.split("|")[6].startswith("10 ")
    assert "msg=test" in line and "src=breach-detector" in line
    assert "rt=1792404000000" in line


def test_cef_escaping():
    ev = _event(path="a=b")
    ev.event_name = "pipe|name"
    line = format_cef(ev, CFG)
    assert "pipe\\|name" in line
    assert "path=a\\=b" in line


def test_syslog_priority_for_critical_is_130():
    line = format_syslog(_event(), CFG, hostname="host1", pid=42)
    assert line == "<130>1 2026-10-19T10:00:00.000+00:00 host1 auditguard 42 breach_detected - test"
    assert format_syslog(_event("info"), CFG, hostname="h", pid=1).startswith("<134>1 ")


def test_leef_attributes_are_tab_separated():
    line = format_leef(_event(user="bob"), CFG)
    header, attrs = line.rsplit("|", 1)
    assert header.startswith("LEEF:2.0|AuditGuard|")
    fields = attrs.split("\t")
    assert fields[0] == "cat=Secrets Leaked"
    assert "sev=2" in fields and "user=bob" in fields


def test_splunk_hec_envelope():
    body = json.loads(format_splunk_hec(_event(user="bob"), CFG))
    assert body["time"] == 1792404000.0
    assert body["sourcetype"] == "auditguard:security"
    assert body["event"]["severity"] == "critical"
    assert body["event"]["user"] == "bob"


# ---- queue --------------------------------------------------------------------

@pytest.mark.asyncio
async def test_queue_evicts_oldest_at_capacity():
    exp = _exporter(queue_max_size=3, batch_size=100)
    for i in range(5):
        assert await exp.queue_event(_event(event_type=f"e{i}")) is True

    assert exp.queue_size == 3
    assert exp.evicted == 2
    await exp.flush()
    sent = [p.split("|")[4] for p in exp.transport.payloads]
    assert sent == ["e2", "e3", "e4"]


@pytest.mark.asyncio
async def test_admission_filters():
    exp = _exporter(min_severity="error", event_types=["breach_detected"])
    assert await exp.queue_event(_event("warning")) is False
    assert await exp.queue_event(_event("critical", event_type="login")) is False
    assert await exp.queue_event(_event("critical")) is True

    off = _exporter(enabled=False)
    assert await off.queue_event(_event()) is False


@pytest.mark.asyncio
async def test_batch_size_triggers_background_flush():
    exp = _exporter(batch_size=2)
    await exp.queue_event(_event())
    assert exp.transport.payloads == []
    await exp.queue_event(_event())
    await exp.drain()
    assert len(exp.transport.payloads) == 2
    assert exp.queue_size == 0


@pytest.mark.asyncio
async def test_full_batch_does_not_wait_for_the_endpoint():
    slow = GatedTransport(ok=False)
    cfg = SIEMConfig(enabled=True, min_severity="info", batch_size=1, retry_attempts=3, retry_backoff_ms=500)
    exp = SIEMExporter(cfg, transport=slow, sleep=_no_sleep)

    assert await asyncio.wait_for(exp.queue_event(_event()), timeout=1) is True
    await asyncio.wait_for(slow.started.wait(), timeout=1)

    slow.gate.set()
    await exp.drain()
    assert exp.failed == 1


@pytest.mark.asyncio
async def test_flush_is_not_reentrant():
    slow = GatedTransport()
    exp = _exporter(transport=slow)
    await exp.queue_event(_event(event_type="e0"))
    await exp.queue_event(_event(event_type="e1"))

    first = asyncio.create_task(exp.flush())
    await asyncio.wait_for(slow.started.wait(), timeout=1)

    await exp.queue_event(_event(event_type="e2"))
    assert tuple(await exp.flush()) == (0, 0)
    assert exp.queue_size == 1

    slow.gate.set()
    assert tuple(await first) == (2, 0)
    assert tuple(await exp.flush()) == (1, 0)
    sent = [p.split("|")[4] for p in slow.payloads]
    assert sent == ["e0", "e1", "e2"]


@pytest.mark.asyncio
async def test_retries_with_linear_backoff():
    waits = []

    async def fake_sleep(sec):
        waits.append(sec)

    cfg = SIEMConfig(enabled=True, min_severity="info", retry_attempts=3, retry_backoff_ms=100)
    down = FakeTransport(ok=False)
    exp = SIEMExporter(cfg, transport=down, sleep=fake_sleep)

    assert await exp.export_event(_event()) is False
    assert len(down.payloads) == 3
    assert waits == [0.1, 0.2]


# ---- failure store ------------------------------------------------------------

@pytest.mark.asyncio
async def test_failed_events_are_stored_and_retried(tmp_path):
    store = FailureStore(str(tmp_path / "siem_failed"))
    transport = FakeTransport(ok=False)
    exp = _exporter(transport=transport, store=store)

    await exp.queue_event(_event())
    assert tuple(await exp.flush()) == (0, 1)
    files = store.files()
    assert len(files) == 1 and files[0].name.startswith("failed-")
    assert store.pending_count() == 1

    transport.ok = True
    assert tuple(await exp.retry_failed()) == (1, 0)
    assert store.files() == []
    assert exp.get_stats()["failed_pending"] == 0


@pytest.mark.asyncio
async def test_retry_keeps_malformed_and_still_failing_lines(tmp_path):
    store = FailureStore(str(tmp_path))
    store.append(_event(event_type="first"))
    path = store.files()[0]
    with path.open("a", encoding="utf-8") as f:
        f.write("not-json\n")

    exp = _exporter(transport=FakeTransport(ok=False), store=store)
    assert tuple(await exp.retry_failed()) == (0, 1)

    lines = path.read_text().splitlines()
    assert json.loads(lines[0])["event_type"] == "first"
    assert lines[1] == "not-json"


# ---- transports ---------------------------------------------------------------

@pytest.mark.asyncio
async def test_http_transport_auth_and_status():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(202 if len(seen) == 1 else 503)

    cfg = SIEMConfig(format="splunk_hec", endpoint="https://splunk.example.org:8088/services/collector",
                     api_key="k-123")
    t = build_transport(cfg, http_transport=httpx.MockTransport(handler))
    assert isinstance(t, HttpTransport)
    assert await t.send("{}") is True
    assert await t.send("{}") is False
    assert seen[0].headers["Authorization"] == "Splunk k-123"

    bearer = build_transport(SIEMConfig(format="cef", endpoint="https://x", api_key="k"))
    assert bearer.headers["Authorization"] == "Bearer k"


@pytest.mark.asyncio
async def test_missing_destination_is_failure():
    assert await HttpTransport(None).send("x") is False
    udp = build_transport(SIEMConfig(format="syslog"))
    assert isinstance(udp, UdpTransport)
    assert await udp.send("x") is False


@pytest.mark.asyncio
async def test_stop_flushes_queue():
    exp = _exporter()
    await exp.queue_event(_event())
    exp.start()
    assert tuple(await exp.stop()) == (1, 0)
    assert exp._scheduler is None
