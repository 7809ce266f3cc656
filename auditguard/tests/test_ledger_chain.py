import asyncio
import json

import pytest

from auditguard.core.errors import LedgerIntegrityError
from auditguard.ledger import GENESIS_HASH, EventFilters, IntegrityLedger
from auditguard.metrics import METRICS_REGISTRY

pytestmark = pytest.mark.asyncio


async def _fill(ledger: IntegrityLedger, n: int):
    out = []
    for i in range(n):
        out.append(await ledger.append("data_access", f"data_read_{i}", {"type": "user", "id": f"u{i}"},
                                       details={"n": i}))
    return out


def _segment_lines(ledger: IntegrityLedger):
    [path] = ledger.store.list_segments()
    return path, path.read_text(encoding="utf-8").splitlines()


@pytest.mark.asyncio
async def test_appends_form_a_chain_from_genesis(ledger):
    events = await _fill(ledger, 3)

    assert events[0].previous_hash == GENESIS_HASH
    assert events[1].previous_hash == events[0].hash
    assert events[2].previous_hash == events[1].hash
    assert ledger.last_hash == events[2].hash

    report = ledger.verify_integrity()
    assert report.valid
    assert report.total_events == 3
    assert report.valid_events == 3
    assert report.last_valid_event_id == events[2].id


@pytest.mark.asyncio
async def test_edited_record_reports_its_index(ledger):
    events = await _fill(ledger, 3)
    path, lines = _segment_lines(ledger)

    record = json.loads(lines[1])
    record["details"]["n"] = 999
    lines[1] = json.dumps(record)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    report = ledger.verify_integrity()
    assert not report.valid
    assert report.first_invalid_index == 1
    assert report.first_invalid_event_id == events[1].id
    assert report.reason == "hash_mismatch"
    assert report.valid_events == 1

    with pytest.raises(LedgerIntegrityError) as exc:
        ledger.ensure_integrity()
    assert exc.value.index == 1


@pytest.mark.asyncio
async def test_removed_record_is_a_chain_break(ledger):
    await _fill(ledger, 3)
    path, lines = _segment_lines(ledger)
    del lines[1]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    report = ledger.verify_integrity()
    assert not report.valid
    assert report.first_invalid_index == 1
    assert report.reason == "chain_break"


@pytest.mark.asyncio
async def test_chain_continues_across_restart(tmp_path):
    first = IntegrityLedger(str(tmp_path))
    events = await _fill(first, 2)

    reopened = IntegrityLedger(str(tmp_path))
    assert reopened.last_hash == events[-1].hash
    nxt = await reopened.append("consent", "consent_given", {"type": "user", "id": "u1"})
    assert nxt.previous_hash == events[-1].hash
    assert reopened.verify_integrity().valid


@pytest.mark.asyncio
async def test_seal_rolls_to_new_segment_and_chain_spans_both(ledger):
    await _fill(ledger, 2)
    seal = await ledger.seal_segment("erasure request")
    after = await ledger.append("retention", "retention_purge", {"type": "system"})

    names = [p.name for p in ledger.store.list_segments()]
    assert len(names) == 2
    assert names[0].endswith("-001.jsonl") and names[1].endswith("-002.jsonl")
    assert seal.category == "retention"
    assert after.previous_hash == seal.hash

    report = ledger.verify_integrity()
    assert report.valid
    assert report.segments == 2
    assert report.total_events == 4


@pytest.mark.asyncio
async def test_partial_tail_refuses_appends(ledger):
    await _fill(ledger, 1)
    head = ledger.last_hash
    path, _ = _segment_lines(ledger)
    with path.open("a", encoding="utf-8") as f:
        f.write('{"id": "half-writ')

    assert await ledger.append("data_access", "data_read", {"type": "system"}) is None
    assert ledger.last_hash == head

    report = ledger.verify_integrity()
    assert not report.valid
    assert report.reason == "corrupt_record"
    assert report.first_invalid_index == 1


@pytest.mark.asyncio
async def test_actor_ip_is_masked(ledger):
    ev = await ledger.append("access_control", "login", {"type": "user", "id": "u1", "ip": "10.1.2.3"})
    assert ev.actor.ip == "10.1.2.0"
    _, lines = _segment_lines(ledger)
    assert "10.1.2.3" not in lines[0]


@pytest.mark.asyncio
async def test_query_filters_newest_first(ledger):
    await _fill(ledger, 3)
    await ledger.log_policy_change("ALERT_MIN_SEVERITY", "warning", "error", changed_by="admin")

    newest = ledger.query(limit=2)
    assert [e.event_type for e in newest] == ["configuration_changed", "data_read_2"]

    only_u1 = ledger.query(EventFilters(actor_id="u1"))
    assert [e.event_type for e in only_u1] == ["data_read_1"]

    policy = ledger.query(EventFilters(category="policy_change"))
    assert policy[0].resource.id == "ALERT_MIN_SEVERITY"

    stats = ledger.get_stats()
    assert stats["total_events"] == 4
    assert stats["events_by_category"]["data_access"] == 3
    assert stats["last_hash"] == ledger.last_hash


@pytest.mark.asyncio
async def test_disabled_ledger_writes_nothing(tmp_path):
    led = IntegrityLedger(str(tmp_path / "off"), enabled=False)
    assert await led.append("consent", "consent_given", {"type": "user"}) is None
    assert not (tmp_path / "off").exists()
    assert led.verify_integrity().valid


@pytest.mark.asyncio
async def test_concurrent_appends_are_strictly_ordered(ledger):
    events = await asyncio.gather(*(
        ledger.append("data_access", "data_read", {"type": "user", "id": f"u{i}"}, details={"n": i})
        for i in range(50)
    ))
    assert all(e is not None for e in events)

    report = ledger.verify_integrity()
    assert report.valid
    assert report.total_events == 50

    _, lines = _segment_lines(ledger)
    records = [json.loads(line) for line in lines]
    assert records[0]["previous_hash"] == GENESIS_HASH
    for prev, cur in zip(records, records[1:]):
        assert cur["previous_hash"] == prev["hash"]
    assert {r["hash"] for r in records} == {e.hash for e in events}
    assert ledger.last_hash == records[-1]["hash"]


def _write_failures() -> float:
    return METRICS_REGISTRY.get_sample_value("ledger_write_failures_total") or 0.0


@pytest.mark.asyncio
async def test_unserialisable_details_return_none(ledger):
    await _fill(ledger, 1)
    head = ledger.last_hash
    before = _write_failures()

    assert await ledger.append("data_access", "data_read", {"type": "system"}, details={("a", 1): "x"}) is None
    assert _write_failures() == before + 1
    assert ledger.last_hash == head

    assert await ledger.append("data_access", "data_read", {"type": "system"}) is not None
    assert ledger.verify_integrity().valid


@pytest.mark.asyncio
async def test_unreadable_segment_returns_none(ledger):
    await _fill(ledger, 1)
    head = ledger.last_hash
    path, _ = _segment_lines(ledger)
    path.unlink()
    path.mkdir()
    before = _write_failures()

    assert await ledger.append("data_access", "data_read", {"type": "system"}) is None
    assert _write_failures() == before + 1
    assert ledger.last_hash == head


@pytest.mark.asyncio
async def test_consent_export_and_deletion_writers(ledger):
    consent = await ledger.log_consent("granted", {"type": "user", "id": "u1"}, ["analytics"], True,
                                       {"consent_id": "c1"})
    export = await ledger.log_data_export({"type": "user", "id": "u1"}, ["history", "settings"], True)
    deletion = await ledger.log_data_deletion({"type": "user", "id": "u1"}, "consent_records", 4, False)

    assert (consent.category, consent.event_type) == ("consent", "consent_granted")
    assert consent.details == {"consent_id": "c1", "purposes": ["analytics"]}
    assert export.event_type == "data_portability_export"
    assert export.details["data_types"] == ["history", "settings"]
    assert deletion.event_type == "erasure_completed" and deletion.outcome == "failure"
    assert deletion.resource.type == "consent_records"
    assert deletion.details["items_deleted"] == 4
    assert ledger.verify_integrity().valid


@pytest.mark.asyncio
async def test_query_with_non_positive_limit_is_empty(ledger):
    await _fill(ledger, 2)
    assert ledger.query(limit=0) == []
    assert ledger.query(limit=-1) == []
    assert len(ledger.query(limit=1)) == 1
