#!/usr/bin/env python3
"""
App Budget Agent
================

A lightweight, locally running agent that enforces per-app daily time budgets:
1. Receives threshold events and interval boundaries from the OS-level
   monitoring scheduler over MQTT (`<prefix>/events`, `<prefix>/interval`).
2. Receives periodic usage snapshots from the usage-report aggregator
   (`<prefix>/usage_report`).
3. Reconciles those channels into one block/unblock decision per app and
   publishes the blocked set, monitor (re)registrations, continuous-usage
   notifications and a status heartbeat.

All decisions are taken by `budget_engine.BudgetEngine`; this module owns the
configuration, logging and MQTT plumbing.
"""

from __future__ import annotations

import json
import locale
import logging
import math
import os
import platform
import re
import signal
import sys
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import paho.mqtt.client as mqtt

from budget_engine import (
    MONITOR_NAME,
    BudgetEngine,
    DecisionSink,
    EngineSettings,
    MonitorSchedule,
    RearmError,
    SyncStatus,
    ThresholdEvent,
    UsageSegment,
)
from budget_state import KEY_BLOCKED_TARGETS, BudgetState

VERSION = "1.0.0"
DEFAULT_CONFIG_PATH = "/etc/app-budget-agent/config.json"
DEFAULT_STATE_PATH = Path.home() / ".local" / "state" / "app-budget-agent" / "state.json"
DEFAULT_LOG_PATH = "/tmp/app_budget_agent.out.log"
DEFAULT_ERR_LOG_PATH = "/tmp/app_budget_agent.err.log"


SUPPORTED_LANG_PHRASES = {
    "en": {
        "title": "App Budget",
        "continuous_body": "You have used app {app} for {streak} minutes in a row (alert at {threshold} minutes).",
    },
    "de": {
        "title": "App-Budget",
        "continuous_body": "Du nutzt App {app} seit {streak} Minuten am Stück (Hinweis ab {threshold} Minuten).",
    },
    "fr": {
        "title": "Budget d'applis",
        "continuous_body": "Tu utilises l'appli {app} depuis {streak} minutes d'affilée (alerte à {threshold} minutes).",
    },
    "es": {
        "title": "Presupuesto de apps",
        "continuous_body": "Llevas {streak} minutos seguidos usando la app {app} (aviso a los {threshold} minutos).",
    },
    "ja": {
        "title": "SNSアラート",
        "continuous_body": "アプリ{app}を{streak}分連続で使用しています（通知閾値: {threshold}分）",
    },
}


def _normalize_lang(value: str) -> str:
    if not value:
        return "en"
    value = re.split(r"[-_.]", value.split(',')[0])[0]
    return value.lower() or "en"


def _detect_language() -> str:
    candidates = []
    for key in ("LANGUAGE", "LC_ALL", "LANG"):
        val = os.environ.get(key)
        if val:
            candidates.append(val)
    try:
        loc = locale.getlocale()[0]
        if loc:
            candidates.append(loc)
    except ValueError:
        pass
    for cand in candidates:
        code = _normalize_lang(cand)
        if code in SUPPORTED_LANG_PHRASES:
            return code
    return "en"


def _sanitize_device_id(value: str) -> str:
    sanitized = "".join(ch if ch.isalnum() or ch in "-_" else "-" for ch in value.lower())
    return sanitized or "device"


def _now_local() -> datetime:
    return datetime.now().astimezone()


def _bounded_seconds(data: Dict[str, Any], key: str, default: float, low: float, high: float) -> float:
    value = float(data.get(key, default))
    if not (low <= value <= high):
        raise ValueError(f"`{key}` must be between {low:g} and {high:g}.")
    return value


@dataclass
class AppBudget:
    id: str
    limit_minutes: int
    continuous_alert_minutes: int = 0


@dataclass
class AgentConfig:
    device_id: str
    mqtt_host: str
    topic_prefix: str
    mqtt_port: int = 1883
    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None
    mqtt_tls: bool = False
    sample_interval_seconds: int = 60
    reset_hour: int = 0
    reset_minute: int = 0
    apps: List[AppBudget] = field(default_factory=list)
    default_limit_minutes: int = 30
    reset_grace_seconds: float = 30
    unsynced_threshold_ignore_window_seconds: float = 180
    min_synced_usage_delay_seconds: float = 30
    usage_event_min_interval_seconds: float = 50
    continuous_session_max_gap_seconds: float = 120
    rearm_cooldown_seconds: float = 30
    sync_stale_threshold_seconds: float = 180
    continuous_tracking_enabled: bool = True
    rearm_baseline_enabled: bool = True
    language: Optional[str] = None
    state_path: Path = DEFAULT_STATE_PATH
    log_file: str = DEFAULT_LOG_PATH
    err_log_file: str = DEFAULT_ERR_LOG_PATH
    debug_mqtt: bool = False

    @classmethod
    def load(cls, path: Path) -> "AgentConfig":
        if not path.exists():
            raise FileNotFoundError(
                f"Required config file missing at {path}. "
                "Create it from the README example."
            )
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentConfig":
        mqtt_host = data.get("mqtt_host", "").strip()
        if not mqtt_host:
            raise ValueError("Config `mqtt_host` is required.")

        device_id = data.get("device_id")
        if not device_id:
            device_id = platform.node() or "device"
        device_id = _sanitize_device_id(device_id)

        topic_prefix = data.get("topic_prefix", f"appbudget/{device_id}").strip()
        if not topic_prefix or "#" in topic_prefix or "+" in topic_prefix:
            raise ValueError("Config `topic_prefix` must be a non-empty topic without wildcards.")

        mqtt_port = int(data.get("mqtt_port", 1883))
        if not (1 <= mqtt_port <= 65535):
            raise ValueError("Config `mqtt_port` must be between 1 and 65535.")

        sample_interval = int(data.get("sample_interval_seconds", 60))
        if not (5 <= sample_interval <= 300):
            raise ValueError("`sample_interval_seconds` must be between 5 and 300.")

        reset_hour = int(data.get("reset_hour", 0))
        if not (0 <= reset_hour <= 23):
            raise ValueError("`reset_hour` must be between 0 and 23.")
        reset_minute = int(data.get("reset_minute", 0))
        if not (0 <= reset_minute <= 59):
            raise ValueError("`reset_minute` must be between 0 and 59.")

        default_limit = int(data.get("default_limit_minutes", 30))
        if not (1 <= default_limit <= 24 * 60):
            raise ValueError("`default_limit_minutes` must be between 1 and 1440.")

        apps_raw = data.get("apps", [])
        if not isinstance(apps_raw, list):
            raise ValueError("`apps` must be a list of app budget objects.")
        apps: List[AppBudget] = []
        seen: Set[str] = set()
        for item in apps_raw:
            if not isinstance(item, dict):
                raise ValueError("Every entry of `apps` must be an object.")
            app_id = str(item.get("id", "")).strip()
            if not app_id:
                raise ValueError("Every entry of `apps` needs a non-empty `id`.")
            if app_id in seen:
                raise ValueError(f"Duplicate app id `{app_id}` in `apps`.")
            seen.add(app_id)
            limit = int(item.get("limit_minutes", default_limit))
            if limit < 1:
                raise ValueError(f"`limit_minutes` for `{app_id}` must be positive.")
            alert = int(item.get("continuous_alert_minutes", 0))
            if alert < 0:
                raise ValueError(f"`continuous_alert_minutes` for `{app_id}` must be >= 0.")
            apps.append(AppBudget(id=app_id, limit_minutes=limit, continuous_alert_minutes=alert))

        language = data.get("language")
        if language is not None:
            language = _normalize_lang(str(language))
            if language not in SUPPORTED_LANG_PHRASES:
                raise ValueError(
                    "`language` must be one of " + ", ".join(sorted(SUPPORTED_LANG_PHRASES)) + "."
                )

        state_path = Path(
            data.get("state_path", str(DEFAULT_STATE_PATH))
        ).expanduser()

        return cls(
            device_id=device_id,
            mqtt_host=mqtt_host,
            topic_prefix=topic_prefix.rstrip("/"),
            mqtt_port=mqtt_port,
            mqtt_username=data.get("mqtt_username"),
            mqtt_password=data.get("mqtt_password"),
            mqtt_tls=bool(data.get("mqtt_tls", False)),
            sample_interval_seconds=sample_interval,
            reset_hour=reset_hour,
            reset_minute=reset_minute,
            apps=apps,
            default_limit_minutes=default_limit,
            reset_grace_seconds=_bounded_seconds(data, "reset_grace_seconds", 30, 0, 600),
            unsynced_threshold_ignore_window_seconds=_bounded_seconds(
                data, "unsynced_threshold_ignore_window_seconds", 180, 0, 3600
            ),
            min_synced_usage_delay_seconds=_bounded_seconds(
                data, "min_synced_usage_delay_seconds", 30, 0, 600
            ),
            usage_event_min_interval_seconds=_bounded_seconds(
                data, "usage_event_min_interval_seconds", 50, 0, 60
            ),
            continuous_session_max_gap_seconds=_bounded_seconds(
                data, "continuous_session_max_gap_seconds", 120, 60, 3600
            ),
            rearm_cooldown_seconds=_bounded_seconds(data, "rearm_cooldown_seconds", 30, 0, 600),
            sync_stale_threshold_seconds=_bounded_seconds(
                data, "sync_stale_threshold_seconds", 180, 30, 3600
            ),
            continuous_tracking_enabled=bool(data.get("continuous_tracking_enabled", True)),
            rearm_baseline_enabled=bool(data.get("rearm_baseline_enabled", True)),
            language=language,
            state_path=state_path,
            log_file=data.get("log_file", DEFAULT_LOG_PATH),
            err_log_file=data.get("err_log_file", DEFAULT_ERR_LOG_PATH),
            debug_mqtt=bool(data.get("debug_mqtt", False)),
        )

    def engine_settings(self) -> EngineSettings:
        return EngineSettings(
            default_limit_minutes=self.default_limit_minutes,
            reset_grace_seconds=self.reset_grace_seconds,
            unsynced_threshold_ignore_window_seconds=self.unsynced_threshold_ignore_window_seconds,
            min_synced_usage_delay_seconds=self.min_synced_usage_delay_seconds,
            usage_event_min_interval_seconds=self.usage_event_min_interval_seconds,
            continuous_session_max_gap_seconds=self.continuous_session_max_gap_seconds,
            rearm_cooldown_seconds=self.rearm_cooldown_seconds,
            sync_stale_threshold_seconds=self.sync_stale_threshold_seconds,
            continuous_tracking_enabled=self.continuous_tracking_enabled,
            rearm_baseline_enabled=self.rearm_baseline_enabled,
        )

    @property
    def events_topic(self) -> str:
        return f"{self.topic_prefix}/events"

    @property
    def interval_topic(self) -> str:
        return f"{self.topic_prefix}/interval"

    @property
    def usage_report_topic(self) -> str:
        return f"{self.topic_prefix}/usage_report"

    @property
    def blocked_topic(self) -> str:
        return f"{self.topic_prefix}/blocked"

    @property
    def monitor_topic(self) -> str:
        return f"{self.topic_prefix}/monitor/config"

    @property
    def notify_topic(self) -> str:
        return f"{self.topic_prefix}/notify"

    @property
    def status_topic(self) -> str:
        return f"{self.topic_prefix}/status"


def parse_usage_report(payload: str) -> List[UsageSegment]:
    """Decode a usage report: {"segments": [{"start", "end", "applications": {id: seconds}}]}."""
    data = json.loads(payload)
    if not isinstance(data, dict) or not isinstance(data.get("segments"), list):
        raise ValueError("usage report must contain a `segments` list")
    segments = []
    for raw in data["segments"]:
        start = datetime.fromisoformat(raw["start"])
        end = datetime.fromisoformat(raw["end"])
        if start.tzinfo is None:
            start = start.astimezone()
        if end.tzinfo is None:
            end = end.astimezone()
        applications = raw.get("applications") or {}
        if not isinstance(applications, dict):
            raise ValueError("segment `applications` must be an object")
        seconds_by_target = {str(k): float(v) for k, v in applications.items()}
        if not all(math.isfinite(v) for v in seconds_by_target.values()):
            raise ValueError("segment `applications` values must be finite numbers")
        segments.append(UsageSegment(start=start, end=end, seconds_by_target=seconds_by_target))
    return segments


class MqttDecisionSink(DecisionSink):
    """Publishes engine decisions for the OS-level blocker, monitor and notifier."""

    def __init__(self, client: mqtt.Client, config: AgentConfig, language: str = "en"):
        self._client = client
        self.config = config
        self.language = language
        self.logger = logging.getLogger("app-budget-agent.mqtt")
        self._blocked: Set[str] = set()

    def _phrase(self, key: str) -> str:
        lang = self.language if self.language in SUPPORTED_LANG_PHRASES else "en"
        try:
            return SUPPORTED_LANG_PHRASES[lang][key]
        except KeyError:
            return SUPPORTED_LANG_PHRASES["en"].get(key, "")

    @property
    def blocked(self) -> Set[str]:
        return set(self._blocked)

    def restore(self, targets: List[str]) -> None:
        """Seed the blocked set persisted by a previous run without publishing."""
        self._blocked = set(targets)

    def block(self, target: str) -> None:
        if target in self._blocked:
            return
        self._blocked.add(target)
        self.publish_blocked()

    def unblock(self, target: str) -> None:
        if target not in self._blocked:
            return
        self._blocked.discard(target)
        self.publish_blocked()

    def publish_blocked(self) -> None:
        try:
            self._client.publish(
                self.config.blocked_topic,
                payload=json.dumps(sorted(self._blocked)),
                retain=True,
                qos=1,
            )
        except Exception:
            self.logger.warning("Failed to publish blocked set.", exc_info=True)

    def rearm(self, schedule: MonitorSchedule, events: Dict[str, ThresholdEvent]) -> None:
        payload = {
            "name": MONITOR_NAME,
            "schedule": schedule.to_dict(),
            "events": {name: event.to_dict() for name, event in sorted(events.items())},
            "timestamp": _now_local().isoformat(),
        }
        try:
            info = self._client.publish(
                self.config.monitor_topic, payload=json.dumps(payload), retain=True, qos=1
            )
        except Exception as exc:
            raise RearmError(str(exc)) from exc
        rc = getattr(info, "rc", mqtt.MQTT_ERR_SUCCESS)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise RearmError(f"publish to {self.config.monitor_topic} failed (rc={rc})")

    def notify(self, target: str, index: int, streak_minutes: int, threshold_minutes: int) -> None:
        body = self._phrase("continuous_body").format(
            app=index + 1, streak=streak_minutes, threshold=threshold_minutes
        )
        payload = {
            "target": target,
            "index": index,
            "title": self._phrase("title"),
            "body": body,
            "streak_minutes": streak_minutes,
            "threshold_minutes": threshold_minutes,
            "timestamp": _now_local().isoformat(),
        }
        try:
            self._client.publish(self.config.notify_topic, payload=json.dumps(payload), qos=1)
        except Exception:
            self.logger.warning(
                "Failed to publish continuous usage notification: idx=%d", index, exc_info=True
            )


class BudgetAgent:
    def __init__(self, config: AgentConfig, client: Optional[mqtt.Client] = None):
        self.config = config
        self.logger = logging.getLogger("app-budget-agent")
        self._language = config.language or _detect_language()

        self._mqtt_client = client or self._build_mqtt_client()
        self.sink = MqttDecisionSink(self._mqtt_client, config, self._language)
        self.state = BudgetState(self.config.state_path)
        self.engine = BudgetEngine(self.state, self.sink, config.engine_settings())
        self.sink.restore(self.state.get_str_list(KEY_BLOCKED_TARGETS))

        self._lock = threading.Lock()
        self._mqtt_connected = False
        self._running = True
        self._armed = False
        self._last_status_publish = 0.0
        self._last_sync: Optional[SyncStatus] = None

    # ------------------------------------------------------------------ MQTT --

    @staticmethod
    def _mqtt_rc_reason(rc: int) -> str:
        rc_map = {
            0: "success",
            1: "incorrect protocol version",
            2: "invalid client identifier",
            3: "server unavailable",
            4: "bad username or password",
            5: "not authorized",
        }
        return rc_map.get(rc, "unknown")

    def _build_mqtt_client(self) -> mqtt.Client:
        client_id = f"app-budget-agent-{self.config.device_id}"
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv311,
            clean_session=True,
        )
        if self.config.mqtt_username:
            client.username_pw_set(
                self.config.mqtt_username, password=self.config.mqtt_password or None
            )
        if self.config.mqtt_tls:
            client.tls_set()
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        if self.config.debug_mqtt:
            mqtt_logger = logging.getLogger("app-budget-agent.mqtt")
            client.enable_logger(mqtt_logger)
        return client

    def start(self) -> None:
        self.logger.info("Starting App Budget Agent v%s", VERSION)
        with self._lock:
            self.engine.resume(_now_local())
        self._connect_mqtt()
        self._main_loop()

    def _connect_mqtt(self) -> None:
        self.logger.info(
            "Connecting to MQTT %s:%s",
            self.config.mqtt_host,
            self.config.mqtt_port,
        )
        try:
            self._mqtt_client.connect_async(
                self.config.mqtt_host, self.config.mqtt_port, keepalive=60
            )
        except Exception as exc:
            self.logger.error(
                "Failed to start MQTT connection to %s:%s: %s",
                self.config.mqtt_host,
                self.config.mqtt_port,
                exc,
            )
            return
        self._mqtt_client.loop_start()

    def _on_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Dict[str, Any],
        reason_code: mqtt.ReasonCode,
        properties: Optional[mqtt.Properties] = None,
    ):
        rc = getattr(reason_code, "value", reason_code)
        try:
            rc = int(rc)
        except (TypeError, ValueError):
            self.logger.warning("Unexpected reason_code type on connect: %r", reason_code)
            rc = -1
        if rc != 0:
            self.logger.error("MQTT connection failed (rc=%s: %s)", rc, self._mqtt_rc_reason(rc))
            return

        self.logger.info("Connected to MQTT broker (rc=0: success).")
        self._mqtt_connected = True
        client.subscribe(self.config.events_topic, qos=1)
        client.subscribe(self.config.interval_topic, qos=1)
        client.subscribe(self.config.usage_report_topic, qos=1)
        client.publish(
            self.config.status_topic,
            json.dumps({"event": "online", "version": VERSION}),
            qos=1,
            retain=False,
        )
        with self._lock:
            if not self._armed:
                self._arm_if_needed(_now_local())
            if self.engine.monitoring_enabled:
                self.engine.reconcile_blocks()
            self.sink.publish_blocked()

    def _on_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: mqtt.ReasonCode,
        properties: Optional[mqtt.Properties] = None,
    ):
        rc_int = getattr(reason_code, "value", reason_code)
        try:
            rc_int = int(rc_int)
        except (TypeError, ValueError):
            self.logger.warning("Unexpected reason_code type on disconnect: %r", reason_code)
        self._mqtt_connected = False
        if rc_int != 0:
            self.logger.warning("Unexpected MQTT disconnect (rc=%s: %s)", rc_int, self._mqtt_rc_reason(rc_int))

    def _on_message(self, client: mqtt.Client, userdata: Any, message: mqtt.MQTTMessage):
        payload = (message.payload or b"").decode("utf-8", errors="ignore").strip()
        now = _now_local()

        if message.topic == self.config.events_topic:
            if not payload:
                self.logger.warning("Received empty event payload on %s", message.topic)
                return
            with self._lock:
                outcome = self.engine.handle_event(payload, now)
            self.logger.info("Event %s handled: %s", payload, outcome)
            return

        if message.topic == self.config.interval_topic:
            with self._lock:
                if payload == "start":
                    self.engine.interval_did_start(now)
                elif payload == "end":
                    self.engine.interval_did_end()
                else:
                    self.logger.warning("Received invalid interval payload '%s'", payload)
            return

        if message.topic == self.config.usage_report_topic:
            try:
                segments = parse_usage_report(payload)
            except (ValueError, KeyError, TypeError):
                self.logger.warning("Invalid usage report payload on %s", message.topic, exc_info=True)
                return
            with self._lock:
                self.engine.ingest_usage_report(segments, now)
                self._last_sync = self.engine.sync_usage(now)
            return

        self.logger.debug("Ignoring message on unexpected topic %s", message.topic)

    # ------------------------------------------------------------ MONITORING --

    def _selection_changed(self) -> bool:
        configured = sorted(app.id for app in self.config.apps)
        if configured != self.engine.targets():
            return True
        if self.state.reset_time() != (self.config.reset_hour, self.config.reset_minute):
            return True
        return any(
            self.engine.limit_minutes(app.id) != app.limit_minutes
            or self.engine.continuous_alert_minutes(app.id) != app.continuous_alert_minutes
            for app in self.config.apps
        )

    def _arm_if_needed(self, now: datetime) -> None:
        if not self.config.apps:
            if self.engine.monitoring_enabled:
                self.logger.info("All apps removed from config; stopping monitoring.")
                self.engine.stop_monitoring()
            else:
                self.logger.warning("No apps configured; monitoring stays off.")
            return
        if self.engine.monitoring_enabled and not self._selection_changed():
            self._armed = True
            return
        try:
            self.engine.arm_monitoring(
                [app.id for app in self.config.apps],
                limits={app.id: app.limit_minutes for app in self.config.apps},
                continuous_alert_limits={app.id: app.continuous_alert_minutes for app in self.config.apps},
                reset_hour=self.config.reset_hour,
                reset_minute=self.config.reset_minute,
                now=now,
            )
        except RearmError as exc:
            self.logger.error("Monitoring start failed: %s", exc)
            return
        self._armed = True

    # ----------------------------------------------------------- MAIN LOOP --

    def _main_loop(self) -> None:
        try:
            while self._running:
                self.run_once()
                sleep_time = max(1.0, float(self.config.sample_interval_seconds))
                time.sleep(sleep_time)
        except KeyboardInterrupt:
            self.logger.info("Stopping agent (SIGINT).")
        finally:
            self._shutdown()

    def run_once(self, now: Optional[datetime] = None) -> Optional[SyncStatus]:
        now = now or _now_local()
        with self._lock:
            if self.engine.monitoring_enabled:
                self._last_sync = self.engine.sync_usage(now)
        self._publish_status_if_needed(force=not self._mqtt_connected)
        return self._last_sync

    def _publish_status_if_needed(self, force: bool = False) -> None:
        now = time.monotonic()
        if not force and now - self._last_status_publish < 55:
            return
        with self._lock:
            snapshot = self.engine.status_snapshot()
        status_payload = {
            "status": "online" if self._mqtt_connected else "degraded",
            "version": VERSION,
            "device_id": self.config.device_id,
            "sync": self._last_sync.state if self._last_sync else None,
            "timestamp": _now_local().isoformat(),
            **snapshot,
        }
        try:
            self._mqtt_client.publish(
                self.config.status_topic,
                payload=json.dumps(status_payload),
                retain=False,
                qos=0,
            )
        except Exception:
            self.logger.warning("Failed to publish status heartbeat.", exc_info=True)
            return
        self._last_status_publish = now

    # ---------------------------------------------------------- SHUTDOWN --

    def stop(self) -> None:
        self._running = False

    def _shutdown(self) -> None:
        self._running = False
        with self._lock:
            self.state.save()
        try:
            self._mqtt_client.loop_stop()
            self._mqtt_client.disconnect()
        except Exception:
            self.logger.warning("Error while shutting down MQTT.", exc_info=True)


def _setup_logging(cfg: AgentConfig) -> None:
    log_path = Path(cfg.log_file).expanduser()
    err_path = Path(cfg.err_log_file).expanduser()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    err_path.parent.mkdir(parents=True, exist_ok=True)

    handler_file = logging.FileHandler(log_path)
    handler_file.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    )
    handler_err = logging.FileHandler(err_path)
    handler_err.setLevel(logging.ERROR)
    handler_err.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        handlers=[handler_file, handler_err, logging.StreamHandler(sys.stdout)],
    )


def main() -> None:
    config_path = Path(
        os.environ.get("APP_BUDGET_AGENT_CONFIG", DEFAULT_CONFIG_PATH)
    ).expanduser()
    try:
        cfg = AgentConfig.load(config_path)
    except Exception as exc:  # pragma: no cover - startup validation
        print(f"Failed to load config: {exc}", file=sys.stderr)
        sys.exit(2)

    _setup_logging(cfg)
    agent = BudgetAgent(cfg)

    def handle_signal(signum, frame):
        agent.logger.info("Received signal %s, shutting down.", signum)
        agent.stop()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    agent.start()


if __name__ == "__main__":
    main()
