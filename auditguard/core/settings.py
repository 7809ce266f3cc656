import json
import logging
import os
from typing import Dict, List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

AlertSeverityName = Literal["info", "warning", "error", "critical"]


class Settings(BaseSettings):
    APP_ENV: str = "dev"
    APP_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    DATA_DIR: str = "./data"

    LEDGER_ENABLED: bool = True
    LEDGER_DIR: Optional[str] = None  # default: DATA_DIR/compliance
    LEDGER_SEGMENT_PERIOD: Literal["month", "day"] = "month"
    LEDGER_RETENTION_YEARS: int = 7

    ALERTS_ENABLED: bool = True
    ALERT_CONSOLE_ENABLED: bool = True
    ALERT_FILE_PATH: str = ""
    ALERT_FILE_FORMAT: Literal["json", "text"] = "json"
    ALERT_WEBHOOK_URL: str = ""
    ALERT_WEBHOOK_HEADERS: str = ""  # JSON object
    ALERT_WEBHOOK_STYLE: Literal["auto", "slack", "teams", "generic"] = "auto"
    ALERT_WEBHOOK_TIMEOUT_SEC: float = 10.0
    ALERT_MIN_SEVERITY: AlertSeverityName = "warning"
    ALERT_COOLDOWN_SECONDS: int = 300
    ALERT_MAX_PER_HOUR: int = 60
    ALERT_KEEP_RECENT: int = 200

    SIEM_ENABLED: bool = False
    SIEM_FORMAT: Literal["json", "cef", "leef", "syslog", "splunk_hec"] = "cef"
    SIEM_ENDPOINT: str = ""
    SIEM_SYSLOG_HOST: str = ""
    SIEM_SYSLOG_PORT: int = 514
    SIEM_API_KEY: str = ""
    SIEM_MIN_SEVERITY: AlertSeverityName = "warning"
    SIEM_EVENT_TYPES: str = ""  # comma-separated allowlist, empty = all
    SIEM_BATCH_SIZE: int = 100
    SIEM_FLUSH_INTERVAL_MS: int = 5000
    SIEM_RETRY_ATTEMPTS: int = 3
    SIEM_RETRY_BACKOFF_MS: int = 1000
    SIEM_QUEUE_MAX_SIZE: int = 10000
    SIEM_FAILED_DIR: Optional[str] = None  # default: DATA_DIR/siem_failed
    SIEM_TIMEOUT_SEC: float = 10.0
    SIEM_VENDOR: str = "AuditGuard"
    SIEM_PRODUCT: str = "Security Pipeline"
    SIEM_PRODUCT_VERSION: str = "0.1.0"
    SIEM_APP_NAME: str = "auditguard"

    BREACH_DETECTION_ENABLED: bool = True
    BREACH_RULES_FILE: Optional[str] = None  # default: DATA_DIR/config/breach-rules.json
    BREACH_ALLOW_RULE_OVERRIDES: bool = False

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def ledger_dir(self) -> str:
        return self.LEDGER_DIR or os.path.join(self.DATA_DIR, "compliance")

    def siem_failed_dir(self) -> str:
        return self.SIEM_FAILED_DIR or os.path.join(self.DATA_DIR, "siem_failed")

    def breach_rules_file(self) -> str:
        return self.BREACH_RULES_FILE or os.path.join(self.DATA_DIR, "config", "breach-rules.json")

    def siem_event_types(self) -> List[str]:
        return [t.strip() for t in self.SIEM_EVENT_TYPES.split(",") if t.strip()]

    def webhook_headers(self) -> Dict[str, str]:
        if not self.ALERT_WEBHOOK_HEADERS.strip():
            return {}
        try:
            data = json.loads(self.ALERT_WEBHOOK_HEADERS)
        except ValueError:
            logger.warning("ALERT_WEBHOOK_HEADERS is not valid JSON, ignoring")
            return {}
        if not isinstance(data, dict):
            logger.warning("ALERT_WEBHOOK_HEADERS must be a JSON object, ignoring")
            return {}
        return {str(k): str(v) for k, v in data.items()}


def get_settings() -> Settings:
    return Settings()
