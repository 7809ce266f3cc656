from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from auditguard.alerts import AlertConfig, AlertManager, ConsoleSink, FileSink, WebhookSink
from auditguard.core.settings import Settings
from auditguard.ledger import IntegrityLedger, LedgerEvent
from auditguard.security import BreachDetector, Detection
from auditguard.siem import FailureStore, SIEMConfig, SIEMExporter

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    settings: Settings
    ledger: IntegrityLedger
    alerts: AlertManager
    siem: SIEMExporter
    detector: BreachDetector

    async def report_event(self, pattern: str, details: Optional[Dict[str, Any]] = None) -> Optional[Detection]:
        return await self.detector.check_event(pattern, details)

    async def append(self, category: str, event_type: str, actor: Any, outcome: str = "success",
                     **kwargs: Any) -> Optional[LedgerEvent]:
        return await self.ledger.append(category, event_type, actor, outcome, **kwargs)

    def start(self) -> None:
        self.siem.start()

    async def stop(self) -> None:
        await self.alerts.drain()
        await self.siem.stop()


def build_alert_manager(s: Settings) -> AlertManager:
    sinks: List[Any] = []
    if s.ALERT_CONSOLE_ENABLED:
        sinks.append(ConsoleSink())
    if s.ALERT_FILE_PATH:
        sinks.append(FileSink(s.ALERT_FILE_PATH, s.ALERT_FILE_FORMAT))
    if s.ALERT_WEBHOOK_URL:
        sinks.append(
            WebhookSink(
                s.ALERT_WEBHOOK_URL,
                headers=s.webhook_headers(),
                timeout_sec=s.ALERT_WEBHOOK_TIMEOUT_SEC,
                style=s.ALERT_WEBHOOK_STYLE,
            )
        )
    config = AlertConfig(
        enabled=s.ALERTS_ENABLED,
        min_severity=s.ALERT_MIN_SEVERITY,
        cooldown_seconds=s.ALERT_COOLDOWN_SECONDS,
        max_alerts_per_hour=s.ALERT_MAX_PER_HOUR,
        keep_recent=s.ALERT_KEEP_RECENT,
    )
    return AlertManager(config, sinks)


def build_siem_config(s: Settings) -> SIEMConfig:
    return SIEMConfig(
        enabled=s.SIEM_ENABLED,
        format=s.SIEM_FORMAT,
        endpoint=s.SIEM_ENDPOINT or None,
        syslog_host=s.SIEM_SYSLOG_HOST or None,
        syslog_port=s.SIEM_SYSLOG_PORT,
        api_key=s.SIEM_API_KEY or None,
        min_severity=s.SIEM_MIN_SEVERITY,
        event_types=s.siem_event_types(),
        batch_size=max(1, s.SIEM_BATCH_SIZE),
        flush_interval_ms=s.SIEM_FLUSH_INTERVAL_MS,
        retry_attempts=s.SIEM_RETRY_ATTEMPTS,
        retry_backoff_ms=s.SIEM_RETRY_BACKOFF_MS,
        queue_max_size=s.SIEM_QUEUE_MAX_SIZE,
        timeout_sec=s.SIEM_TIMEOUT_SEC,
        vendor=s.SIEM_VENDOR,
        product=s.SIEM_PRODUCT,
        product_version=s.SIEM_PRODUCT_VERSION,
        app_name=s.SIEM_APP_NAME,
    )


def build_pipeline(settings: Settings | None = None) -> Pipeline:
    s = settings or Settings()
    ledger = IntegrityLedger(
        s.ledger_dir(),
        enabled=s.LEDGER_ENABLED,
        period=s.LEDGER_SEGMENT_PERIOD,
        retention_years=s.LEDGER_RETENTION_YEARS,
    )
    alerts = build_alert_manager(s)
    siem = SIEMExporter(build_siem_config(s), failure_store=FailureStore(s.siem_failed_dir()))
    detector = BreachDetector(
        ledger,
        alerts,
        siem,
        rules_file=s.breach_rules_file(),
        enabled=s.BREACH_DETECTION_ENABLED,
        allow_overrides=s.BREACH_ALLOW_RULE_OVERRIDES,
    )
    logger.info(
        "pipeline ready: ledger=%s alerts=%s siem=%s(%s) rules=%d",
        s.ledger_dir(), [x.name for x in alerts.sinks], s.SIEM_ENABLED, s.SIEM_FORMAT,
        len(detector.get_rules()),
    )
    return Pipeline(settings=s, ledger=ledger, alerts=alerts, siem=siem, detector=detector)
