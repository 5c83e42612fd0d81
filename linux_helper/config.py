"""Configuration loader for the Linux Helper daemon."""

import logging
import os
from dataclasses import dataclass, field, fields
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_DIR = os.path.expanduser("~/.config/linux-helper")
CONFIG_PATH = os.path.join(CONFIG_DIR, "daemon.json")

DEFAULT_SCREENSHOT_DIR = os.path.expanduser("~/Pictures/linux-helper-screenshots")


@dataclass
class PopupSettings:
    enabled: bool = True
    width: int = 400
    height: int = 300
    follow_cursor: bool = True
    theme: str = "dark"  # "dark", "light", or "auto"
    auto_submit: bool = False  # press Enter after typing an executed command


@dataclass
class DaemonConfig:
    socket_path: str = "/tmp/linux-helper.sock"
    log_level: str = "info"
    hotkey: str = "ForwardButton"
    auto_start: bool = True
    popup_socket_path: str = "/tmp/linux-helper-popup.sock"
    control_socket_path: str = "/tmp/linux-helper-control.sock"
    lock_path: str = "/tmp/linux-helper-daemon.lock"
    screenshot_dir: str = DEFAULT_SCREENSHOT_DIR
    log_file: str = os.path.join(CONFIG_DIR, "daemon.log")
    debounce_ms: int = 500
    reconnect_delay: float = 5.0          # host channel, retried forever
    send_timeout: float = 10.0            # host channel peer that stops reading is dropped
    popup_connect_attempts: int = 5
    popup_connect_interval: float = 1.0
    monitor_restart_delay: float = 5.0
    capture_timeout: float = 10.0
    cleanup_max_age_days: float = 7.0
    cleanup_interval: float = 3600.0      # 0 disables the periodic sweep
    analyzer_command: Optional[list] = None
    analyzer_timeout: float = 60.0
    awaiting_timeout: float = 30.0        # 0 keeps awaiting until the next press
    popup: PopupSettings = field(default_factory=PopupSettings)

    def __post_init__(self):
        if isinstance(self.popup, dict):
            self.popup = PopupSettings(**_convert_keys(self.popup, PopupSettings))
        if isinstance(self.analyzer_command, str):
            self.analyzer_command = self.analyzer_command.split()

    @property
    def standalone(self) -> bool:
        """True when the daemon drives analysis and the popup itself."""
        return bool(self.analyzer_command) and self.popup.enabled


def _snake_case(key: str) -> str:
    out = []
    for ch in key:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out)


def _convert_keys(data: dict, cls) -> dict:
    """Map camelCase document keys onto dataclass fields, dropping unknown ones."""
    known = {f.name for f in fields(cls)}
    converted = {}
    for key, value in data.items():
        name = _snake_case(str(key))
        if name in known:
            converted[name] = value
        else:
            logger.warning("Ignoring unknown config key: %s", key)
    return converted


def load_config(path: str = CONFIG_PATH) -> DaemonConfig:
    """Load configuration from daemon.json, with defaults for missing values.

    The document is parsed with ``yaml.safe_load``, which reads plain JSON;
    a YAML file at the same path works too.
    """
    data = {}
    if os.path.exists(path):
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Failed to load config %s, using defaults: %s", path, e)
            data = {}

    if not isinstance(data, dict):
        logger.warning("Config %s is not a mapping, using defaults", path)
        data = {}

    return DaemonConfig(**_convert_keys(data, DaemonConfig))
