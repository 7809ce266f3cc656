import asyncio
import json

import pytest

from auditguard.core.errors import RuleConfigError
from auditguard.ledger import EventFilters, IntegrityLedger
from auditguard.security import BreachDetector, DEFAULT_RULES
from auditguard.siem import SIEMConfig, SIEMExporter

from .conftest import FakeTransport, GatedTransport

pytestmark = pytest.mark.asyncio


@pytest.fixture
def detector(ledger, alerts, clock, tmp_path):
    return BreachDetector(ledger, alerts, rules_file=str(tmp_path / "breach-rules.json"), clock=clock)


@pytest.mark.asyncio
async def test_brute_force_trips_exactly_at_threshold(detector, alerts):
    for _ in range(9):
        assert await detector.check_event("auth_failed", {"user": "bob"}) is None

    det = await detector.check_event("auth_failed", {"user": "bob"})
    assert det is not None
    assert det.rule.id == "rule_brute_force"
    assert det.event_count == 10
    assert det.blocked
    assert list(det.actions_taken) == ["log", "block", "alert", "create_incident"]
    assert detector.is_blocked("auth_failed")

    # tracker was emptied by the trip
    assert await detector.check_event("auth_failed") is None
    await alerts.drain()


@pytest.mark.asyncio
async def test_events_outside_window_are_forgotten(detector, alerts, clock):
    for _ in range(9):
        await detector.check_event("auth_failed")
    clock.advance(301)
    assert await detector.check_event("auth_failed") is None

    for _ in range(8):
        assert await detector.check_event("auth_failed") is None
    assert await detector.check_event("auth_failed") is not None
    await alerts.drain()


@pytest.mark.asyncio
async def test_secrets_leaked_scenario(detector, ledger, alerts, sink):
    det = await detector.check_event("secrets_detected", {"file": "out.txt"})
    await alerts.drain()

    assert det is not None
    assert det.rule.severity == "critical"
    assert "alert" in det.actions_taken
    assert det.incident_id and det.incident_id.startswith("incident_")

    assert len(sink.alerts) == 1
    alert = sink.alerts[0]
    assert alert.severity == "critical"
    assert alert.title == "Breach Detected: Secrets Leaked in Output"
    assert alert.id == det.alert_id
    assert alert.details["file"] == "out.txt"

    incidents = ledger.query(EventFilters(category="security_incident"))
    assert len(incidents) == 1
    assert incidents[0].event_type == "breach_incident_created"
    assert incidents[0].details["incident_id"] == det.incident_id

    breaches = ledger.query(EventFilters(category="breach"))
    assert breaches[0].details["rule_id"] == "rule_secrets_leaked"
    assert ledger.verify_integrity().valid


@pytest.mark.asyncio
async def test_mass_export_notifies_admin(detector, alerts, sink):
    for _ in range(2):
        assert await detector.check_event("data_export") is None
    det = await detector.check_event("data_export")
    await alerts.drain()

    assert list(det.actions_taken) == ["log", "notify_admin"]
    assert sink.alerts[0].title == "[Admin] Mass Data Export"
    assert sink.alerts[0].severity == "warning"


@pytest.mark.asyncio
async def test_failed_ledger_write_drops_log_action(tmp_path, alerts, clock):
    dead = IntegrityLedger(str(tmp_path / "off"), enabled=False)
    det = await BreachDetector(dead, alerts, clock=clock).check_event("prompt_injection")
    await alerts.drain()
    assert list(det.actions_taken) == ["alert"]


@pytest.mark.asyncio
async def test_invalid_regex_still_matches_literally(detector):
    await detector.add_rule({"name": "Bracket", "severity": "low", "event_pattern": "foo[", "actions": ["block"]})

    assert await detector.check_event("foobar") is None
    det = await detector.check_event("foo[")
    assert det is not None and det.rule.name == "Bracket"


@pytest.mark.asyncio
async def test_regex_rule_matches_by_search(detector):
    rule = await detector.add_rule(
        {"name": "Token reuse", "severity": "high", "event_pattern": r"token_(reuse|replay)", "actions": ["block"]}
    )
    assert rule.id.startswith("rule_") and len(rule.id) == len("rule_") + 8
    det = await detector.check_event("api_token_replay")
    assert det.rule.id == rule.id


@pytest.mark.asyncio
async def test_all_matching_rules_are_fed(detector):
    await detector.add_rule({"id": "rule_a", "name": "A", "severity": "low", "event_pattern": "ping", "actions": []})
    await detector.add_rule({"id": "rule_b", "name": "B", "severity": "low", "event_pattern": "ping", "actions": []})

    found = await detector.check_event_all("ping")
    assert [d.rule.id for d in found] == ["rule_a", "rule_b"]
    assert detector.get_stats()["by_rule"] == {"rule_a": 1, "rule_b": 1}


@pytest.mark.asyncio
async def test_builtin_rules_are_protected(detector):
    with pytest.raises(RuleConfigError):
        await detector.add_rule({"id": "rule_brute_force", "name": "x", "severity": "low", "event_pattern": "x"})
    with pytest.raises(RuleConfigError):
        await detector.update_rule("rule_brute_force", {"threshold": 2})
    assert await detector.remove_rule("rule_brute_force") is False
    assert await detector.remove_rule("rule_missing") is False


@pytest.mark.asyncio
async def test_invalid_rule_is_rejected(detector):
    with pytest.raises(RuleConfigError):
        await detector.add_rule({"name": "bad", "severity": "urgent", "event_pattern": "x"})
    with pytest.raises(RuleConfigError):
        await detector.add_rule({"name": "bad", "severity": "low", "event_pattern": "x", "threshold": 0})


@pytest.mark.asyncio
async def test_custom_rules_persist_and_reload(detector, ledger, alerts, clock, tmp_path):
    rule = await detector.add_rule(
        {"name": "Export burst", "severity": "medium", "event_pattern": "bulk_export", "threshold": 2,
         "window_seconds": 60, "actions": ["log"]}
    )
    updated = await detector.update_rule(rule.id, {"threshold": 4})
    assert updated.threshold == 4

    doc = json.loads((tmp_path / "breach-rules.json").read_text())
    assert doc["version"] and doc["last_updated"]
    assert [r["id"] for r in doc["rules"]] == [rule.id]

    again = BreachDetector(ledger, alerts, rules_file=str(tmp_path / "breach-rules.json"), clock=clock)
    assert again.get_rule(rule.id).threshold == 4
    assert len(again.get_rules()) == len(DEFAULT_RULES) + 1

    assert await again.remove_rule(rule.id) is True
    assert json.loads((tmp_path / "breach-rules.json").read_text())["rules"] == []


@pytest.mark.asyncio
async def test_rules_file_overrides_need_opt_in(ledger, alerts, clock, tmp_path):
    path = tmp_path / "breach-rules.json"
    override = {**DEFAULT_RULES[0].model_dump(), "threshold": 2}
    path.write_text(json.dumps({"version": "1.0.0", "rules": [override, {"id": "broken"}]}))

    strict = BreachDetector(ledger, alerts, rules_file=str(path), clock=clock)
    assert strict.get_rule("rule_brute_force").threshold == 10
    assert strict.get_rule("broken") is None

    relaxed = BreachDetector(ledger, alerts, rules_file=str(path), allow_overrides=True, clock=clock)
    assert relaxed.get_rule("rule_brute_force").threshold == 2
    assert await relaxed.remove_rule("rule_brute_force") is False


@pytest.mark.asyncio
async def test_malformed_rules_file_falls_back_to_defaults(ledger, alerts, tmp_path):
    path = tmp_path / "breach-rules.json"
    path.write_text("{not json")
    det = BreachDetector(ledger, alerts, rules_file=str(path))
    assert len(det.get_rules()) == len(DEFAULT_RULES)


@pytest.mark.asyncio
async def test_disabled_detector_tracks_nothing(ledger, alerts):
    det = BreachDetector(ledger, alerts, enabled=False)
    assert await det.check_event("secrets_detected") is None
    assert det.get_stats()["detections_count"] == 0


@pytest.mark.asyncio
async def test_detection_is_queued_for_siem(ledger, alerts, clock):
    siem = SIEMExporter(SIEMConfig(enabled=True, min_severity="info"), transport=FakeTransport())
    det = BreachDetector(ledger, alerts, siem, clock=clock)

    await det.check_event("auth_lockout", {"user": "eve", "rule_id": "forged"})
    await alerts.drain()
    assert siem.queue_size == 1
    queued = siem._queue[0].details
    assert queued["rule_id"] == "rule_auth_lockout" and queued["user"] == "eve"
    assert (await siem.flush()).sent == 1
    payload = siem.transport.payloads[0]
    assert "breach_detected" in payload and "Authentication Lockout" in payload


@pytest.mark.asyncio
async def test_unblock_and_stats(detector, alerts):
    await detector.check_event("cert_pinning_violation")
    await alerts.drain()
    assert detector.get_blocked_patterns() == ["cert_pinning_violation"]
    assert detector.unblock("cert_pinning_violation") is True
    assert detector.unblock("cert_pinning_violation") is False

    stats = detector.get_stats()
    assert stats["rules_count"] == len(DEFAULT_RULES)
    assert stats["detections_count"] == 1
    assert stats["by_severity"]["critical"] == 1
    assert detector.get_recent_detections(1)[0].rule.id == "rule_cert_violation"


@pytest.mark.asyncio
async def test_stalled_siem_endpoint_does_not_hold_detection(ledger, alerts, clock):
    async def no_sleep(sec):
        return None

    stalled = GatedTransport(ok=False)
    cfg = SIEMConfig(enabled=True, min_severity="info", batch_size=1, retry_attempts=3, retry_backoff_ms=500)
    siem = SIEMExporter(cfg, transport=stalled, sleep=no_sleep)
    det = BreachDetector(ledger, alerts, siem, clock=clock)

    found = await asyncio.wait_for(det.check_event("secrets_detected"), timeout=1)
    assert found is not None and "log" in found.actions_taken

    await asyncio.wait_for(stalled.started.wait(), timeout=1)
    stalled.gate.set()
    await siem.drain()
    await alerts.drain()
    assert siem.failed == 1


@pytest.mark.asyncio
async def test_reported_details_cannot_overwrite_detection_fields(detector, ledger, alerts, sink):
    forged = {"detection_id": "forged", "rule_id": "rule_other", "event_count": 999, "file": "out.txt"}
    det = await detector.check_event("secrets_detected", forged)
    await alerts.drain()

    [breach] = ledger.query(EventFilters(category="breach"))
    assert breach.details["detection_id"] == det.id
    assert breach.details["rule_id"] == "rule_secrets_leaked"
    assert breach.details["event_count"] == 1
    assert breach.details["file"] == "out.txt"

    [incident] = ledger.query(EventFilters(category="security_incident"))
    assert incident.details["detection_id"] == det.id

    assert sink.alerts[0].details["detection_id"] == det.id
    assert sink.alerts[0].details["event_count"] == 1
