"""
clawguard/config.py
────────────────────
Configuration loading.

Layers, lowest priority first:

  1. DEFAULTS below
  2. JSON config file (explicit path, else the first of CONFIG_PATHS found),
     deep-merged over the defaults
  3. ``.env`` file, loaded into the environment without overriding it
  4. CLAWGUARD_* environment variables
  5. keyword overrides passed to load_config()

Invalid values fall back to defaults with a logged warning. Components
never read this module's state; they get their values through their
constructors.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import pathlib
from dataclasses import dataclass, field

logger = logging.getLogger("clawguard.config")

DEFAULT_PORT = 3847
DEFAULT_BIND = "127.0.0.1"

CONFIG_PATHS = [
    pathlib.Path("config.json"),
    pathlib.Path("~/.clawguard/config.json").expanduser(),
    pathlib.Path("~/.config/clawguard/config.json").expanduser(),
]

AGENT_HOMES = (".openclaw", ".moltbot", ".clawdbot")

DEFAULTS: dict = {
    "port": DEFAULT_PORT,
    "bind": DEFAULT_BIND,
    "sessionsPath": "auto",
    "trustedRoot": None,
    "pollIntervalMs": 1000,
    "alerts": {
        "enabled": False,
        "webhookUrl": None,
        "telegramChatId": None,
        "onRiskLevels": ["high", "critical"],
        "onSequences": True,
        "timeoutMs": 10000,
    },
    "streaming": {
        "enabled": False,
        "endpoint": None,
        "authHeader": None,
        "batchSize": 10,
        "flushIntervalMs": 5000,
        "maxBufferSize": 500,
        "retryKeep": 100,
        "timeoutMs": 10000,
    },
    "detection": {
        "enableSequenceDetection": True,
        "sequenceWindowMinutes": 5,
        "maxSequences": 20,
        "recentWindowSize": 500,
    },
}

RISK_LEVELS = ("low", "medium", "high", "critical")


# ──────────────────────────────────────────────────────────────────────────────
# .env loader
# ──────────────────────────────────────────────────────────────────────────────

def _load_dotenv(path: pathlib.Path | None = None) -> None:
    candidates = [path] if path else [pathlib.Path(".env")]
    for p in candidates:
        if p and p.exists():
            for line in p.read_text().splitlines():
                line = line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, _, val = line.partition("=")
                os.environ.setdefault(key.strip(), val.strip().strip('"').strip("'"))
            logger.debug("Loaded .env from %s", p)
            break


# ──────────────────────────────────────────────────────────────────────────────
# Dataclasses
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class AlertConfig:
    enabled: bool = False
    webhook_url: str | None = None
    telegram_chat_id: str | None = None
    levels: tuple = ("high", "critical")
    on_sequences: bool = True
    timeout: float = 10.0


@dataclass
class StreamingConfig:
    enabled: bool = False
    endpoint: str | None = None
    auth_header: str | None = None
    batch_size: int = 10
    flush_interval: float = 5.0
    max_size: int = 500
    retry_keep: int = 100
    timeout: float = 10.0

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.endpoint)


@dataclass
class DetectionConfig:
    enabled: bool = True
    window_seconds: float = 300.0
    max_results: int = 20
    recent_size: int = 500


@dataclass
class Config:
    port: int = DEFAULT_PORT
    bind: str = DEFAULT_BIND
    sessions_dirs: list = field(default_factory=list)
    trusted_root: str | None = None
    poll_interval: float = 1.0
    alerts: AlertConfig = field(default_factory=AlertConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    source: str = "default"
    config_path: str | None = None
    raw: dict = field(default_factory=dict, repr=False)

    def redacted(self) -> dict:
        """JSON-friendly view with secrets masked."""
        return {
            "port": self.port,
            "bind": self.bind,
            "sessionsPaths": list(self.sessions_dirs),
            "trustedRoot": self.trusted_root,
            "pollIntervalMs": int(self.poll_interval * 1000),
            "alerts": {
                "enabled": self.alerts.enabled,
                "webhookUrl": "***configured***" if self.alerts.webhook_url else None,
                "telegramChatId": self.alerts.telegram_chat_id,
                "onRiskLevels": list(self.alerts.levels),
                "onSequences": self.alerts.on_sequences,
            },
            "streaming": {
                "enabled": self.streaming.enabled,
                "endpoint": "***configured***" if self.streaming.endpoint else None,
                "authHeader": "***" if self.streaming.auth_header else None,
                "batchSize": self.streaming.batch_size,
                "flushIntervalMs": int(self.streaming.flush_interval * 1000),
            },
            "detection": {
                "enableSequenceDetection": self.detection.enabled,
                "sequenceWindowMinutes": self.detection.window_seconds / 60,
                "maxSequences": self.detection.max_results,
            },
            "source": self.source,
            "configPath": self.config_path,
        }


# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────

def deep_merge(target: dict, source: dict) -> dict:
    result = dict(target)
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _number(value, default, name: str, cast=float):
    try:
        number = cast(value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s %r — using default %r", name, value, default)
        return default
    if number < 0:
        logger.warning("Negative %s %r — using default %r", name, value, default)
        return default
    return number


def _flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _expand(path: str) -> str:
    return os.path.expanduser(str(path))


def discover_agent_paths(base: str) -> list[str]:
    """``<base>/<agent>/sessions`` for every agent directory under ``base``."""
    base = _expand(base)
    try:
        entries = sorted(os.listdir(base))
    except OSError as e:
        logger.error("Failed to discover agents in %s: %s", base, e)
        return []
    return [
        os.path.join(base, name, "sessions")
        for name in entries
        if os.path.isdir(os.path.join(base, name, "sessions"))
    ]


def detect_sessions_paths(home: str | None = None) -> list[str]:
    """Probe the known agent homes; first one with agents wins."""
    home = home or os.path.expanduser("~")
    for name in AGENT_HOMES:
        base = os.path.join(home, name, "agents")
        if os.path.isdir(base):
            paths = discover_agent_paths(base)
            if paths:
                return paths
    for name in AGENT_HOMES:
        for candidate in (os.path.join(home, name, "agents", "main", "sessions"),
                          os.path.join(home, name, "sessions")):
            if os.path.isdir(candidate):
                return [candidate]
    return [os.path.join(home, AGENT_HOMES[0], "agents", "main", "sessions")]


def resolve_sessions_paths(raw: dict) -> list[str]:
    explicit = raw.get("sessionsPaths")
    if isinstance(explicit, list) and explicit:
        return [_expand(p) for p in explicit]
    if raw.get("agentsBasePath"):
        return discover_agent_paths(raw["agentsBasePath"])
    single = raw.get("sessionsPath") or "auto"
    if single == "auto":
        return detect_sessions_paths()
    return [_expand(single)]


def _read_config_file(path: pathlib.Path | None) -> tuple[dict, str | None]:
    candidates = [pathlib.Path(path).expanduser()] if path else CONFIG_PATHS
    for p in candidates:
        if not p.exists():
            continue
        try:
            data = json.loads(p.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to parse config at %s: %s", p, e)
            continue
        if not isinstance(data, dict):
            logger.error("Config at %s is not a JSON object — ignored", p)
            continue
        logger.info("Loaded config from %s", p)
        return data, str(p)
    return {}, None


def _env_layer() -> dict:
    env = os.environ
    layer: dict = {}
    if env.get("CLAWGUARD_PORT"):
        layer["port"] = env["CLAWGUARD_PORT"]
    if env.get("CLAWGUARD_BIND"):
        layer["bind"] = env["CLAWGUARD_BIND"]
    if env.get("CLAWGUARD_SESSIONS_DIR"):
        layer["sessionsPaths"] = [p for p in env["CLAWGUARD_SESSIONS_DIR"].split(os.pathsep) if p]
    if env.get("CLAWGUARD_TRUSTED_ROOT"):
        layer["trustedRoot"] = env["CLAWGUARD_TRUSTED_ROOT"]

    alerts: dict = {}
    if env.get("CLAWGUARD_WEBHOOK_URL"):
        alerts["webhookUrl"] = env["CLAWGUARD_WEBHOOK_URL"]
        alerts["enabled"] = True
    if env.get("CLAWGUARD_TELEGRAM_CHAT_ID"):
        alerts["telegramChatId"] = env["CLAWGUARD_TELEGRAM_CHAT_ID"]
    if env.get("CLAWGUARD_ALERTS_ENABLED"):
        alerts["enabled"] = _flag(env["CLAWGUARD_ALERTS_ENABLED"])
    if alerts:
        layer["alerts"] = alerts

    streaming: dict = {}
    if env.get("CLAWGUARD_SINK_URL"):
        streaming["endpoint"] = env["CLAWGUARD_SINK_URL"]
        streaming["enabled"] = True
    if env.get("CLAWGUARD_SINK_AUTH"):
        streaming["authHeader"] = env["CLAWGUARD_SINK_AUTH"]
    if streaming:
        layer["streaming"] = streaming

    if env.get("CLAWGUARD_SEQUENCE_WINDOW_MINUTES"):
        layer["detection"] = {"sequenceWindowMinutes": env["CLAWGUARD_SEQUENCE_WINDOW_MINUTES"]}
    return layer


def _levels(value) -> tuple:
    if isinstance(value, str):
        value = [v.strip() for v in value.split(",")]
    if not isinstance(value, (list, tuple)):
        return AlertConfig.levels
    levels = tuple(str(v).lower() for v in value if str(v).lower() in RISK_LEVELS)
    if len(levels) != len(value):
        logger.warning("Ignoring unknown risk levels in %r", value)
    return levels


def _build(raw: dict) -> Config:
    alerts = raw.get("alerts") or {}
    streaming = raw.get("streaming") or {}
    detection = raw.get("detection") or {}
    d = DEFAULTS

    port = _number(raw.get("port"), DEFAULT_PORT, "port", int)
    if not 0 < port < 65536:
        logger.warning("Invalid port %r — using default %d", port, DEFAULT_PORT)
        port = DEFAULT_PORT

    return Config(
        port=port,
        bind=str(raw.get("bind") or DEFAULT_BIND),
        sessions_dirs=resolve_sessions_paths(raw),
        trusted_root=_expand(raw["trustedRoot"]) if raw.get("trustedRoot") else None,
        poll_interval=_number(raw.get("pollIntervalMs"), d["pollIntervalMs"], "pollIntervalMs") / 1000,
        alerts=AlertConfig(
            enabled=_flag(alerts.get("enabled")),
            webhook_url=alerts.get("webhookUrl") or None,
            telegram_chat_id=str(alerts["telegramChatId"]) if alerts.get("telegramChatId") else None,
            levels=_levels(alerts.get("onRiskLevels", d["alerts"]["onRiskLevels"])),
            on_sequences=_flag(alerts.get("onSequences")),
            timeout=_number(alerts.get("timeoutMs"), d["alerts"]["timeoutMs"], "alerts.timeoutMs") / 1000,
        ),
        streaming=StreamingConfig(
            enabled=_flag(streaming.get("enabled")),
            endpoint=streaming.get("endpoint") or None,
            auth_header=streaming.get("authHeader") or None,
            batch_size=max(1, _number(streaming.get("batchSize"), 10, "streaming.batchSize", int)),
            flush_interval=_number(streaming.get("flushIntervalMs"), 5000,
                                   "streaming.flushIntervalMs") / 1000,
            max_size=max(1, _number(streaming.get("maxBufferSize"), 500, "streaming.maxBufferSize", int)),
            retry_keep=_number(streaming.get("retryKeep"), 100, "streaming.retryKeep", int),
            timeout=_number(streaming.get("timeoutMs"), 10000, "streaming.timeoutMs") / 1000,
        ),
        detection=DetectionConfig(
            enabled=_flag(detection.get("enableSequenceDetection")),
            window_seconds=_number(detection.get("sequenceWindowMinutes"), 5,
                                   "detection.sequenceWindowMinutes") * 60,
            max_results=_number(detection.get("maxSequences"), 20, "detection.maxSequences", int),
            recent_size=max(1, _number(detection.get("recentWindowSize"), 500,
                                       "detection.recentWindowSize", int)),
        ),
        raw=raw,
    )


# ──────────────────────────────────────────────────────────────────────────────
# Public API
# ──────────────────────────────────────────────────────────────────────────────

_OVERRIDE_KEYS = {
    "port":          ("port",),
    "bind":          ("bind",),
    "sessions_dirs": ("sessionsPaths",),
    "trusted_root":  ("trustedRoot",),
    "webhook_url":   ("alerts", "webhookUrl"),
    "sink_url":      ("streaming", "endpoint"),
    "sink_auth":     ("streaming", "authHeader"),
    "window_minutes": ("detection", "sequenceWindowMinutes"),
}


def _override_layer(overrides: dict) -> dict:
    layer: dict = {}
    for name, value in overrides.items():
        if value is None:
            continue
        keys = _OVERRIDE_KEYS.get(name)
        if keys is None:
            raise TypeError(f"unknown config override {name!r}")
        node = layer
        for key in keys[:-1]:
            node = node.setdefault(key, {})
        node[keys[-1]] = list(value) if name == "sessions_dirs" else value
        if name == "sink_url":
            layer["streaming"]["enabled"] = True
        if name == "webhook_url":
            layer["alerts"]["enabled"] = True
    return layer


def load_config(path: str | pathlib.Path | None = None,
                dotenv_path: pathlib.Path | None = None,
                **overrides) -> Config:
    """
    Build a Config from every layer.

    Args:
        path:        Explicit JSON config file; otherwise CONFIG_PATHS are tried.
        dotenv_path: Explicit .env file; otherwise ``./.env``.
        overrides:   port, bind, sessions_dirs, trusted_root, webhook_url,
                     sink_url, sink_auth, window_minutes. None means "not given".
    """
    _load_dotenv(pathlib.Path(dotenv_path) if dotenv_path else None)

    file_layer, config_path = _read_config_file(pathlib.Path(path) if path else None)
    env_layer = _env_layer()
    override_layer = _override_layer(overrides)

    raw = copy.deepcopy(DEFAULTS)
    for layer in (file_layer, env_layer, override_layer):
        raw = deep_merge(raw, layer)

    config = _build(raw)
    config.config_path = config_path
    if "port" in override_layer:
        config.source = "explicit"
    elif "port" in env_layer:
        config.source = "env"
    elif config_path:
        config.source = "file"
    return config


def save_config(config: Config | dict, path: str | pathlib.Path | None = None) -> bool:
    """Write the JSON form of ``config``; internal keys are not persisted."""
    if isinstance(config, Config):
        data = dict(config.raw)
        target = path or config.config_path or CONFIG_PATHS[0]
    else:
        data = dict(config)
        target = path or data.get("_configPath") or CONFIG_PATHS[0]
    data = {k: v for k, v in data.items() if not k.startswith("_")}

    target = pathlib.Path(target).expanduser()
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(data, indent=2))
    except OSError as e:
        logger.error("Failed to save config to %s: %s", target, e)
        return False
    logger.info("Saved config to %s", target)
    return True
