#!/usr/bin/env python3
"""
Settings Manager
Handles loading, saving and updating the daemon settings (settings.json)
"""

import json
import logging
import os
import platform
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

APP_DIR_NAME = "ClaudeSleepPreventer"


def default_data_dir() -> Path:
    """Data directory for settings, session state and logs"""
    override = os.getenv("CLAUDE_SLEEP_PREVENTER_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".local" / "share" / APP_DIR_NAME


def _default_power_backend() -> str:
    return "pmset" if platform.system() == "Darwin" else "dry-run"


class Settings(BaseModel):
    prevention_enabled: bool = True

    # Liveness reaper
    grace_period_seconds: float = Field(10.0, ge=0)
    idle_cpu_threshold: float = Field(1.0, ge=0)
    cpu_sample_interval: float = Field(0.1, gt=0)
    probe_timeout: float = Field(2.0, gt=0)
    reaper_interval: float = Field(1.0, gt=0)

    # Safety monitor
    thermal_interval: float = Field(30.0, gt=0)
    thermal_failure_policy: str = Field("fail_open", pattern="^(fail_open|fail_closed)$")

    reporter_process_name: str = "claude"

    # Power control
    power_backend: str = Field(default_factory=_default_power_backend, pattern="^(pmset|dry-run)$")
    pmset_timeout: float = Field(5.0, gt=0)
    sleep_when_lid_closed: bool = True

    # API server
    api_host: str = "127.0.0.1"
    api_port: int = Field(8765, gt=0, lt=65536)
    metrics_enabled: bool = True

    log_level: str = "INFO"


class SettingsManager:
    """Thread-safe access to the persisted settings file"""

    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir) if data_dir is not None else default_data_dir()
        self.settings_path = self.data_dir / "settings.json"
        self.settings_lock = threading.RLock()
        # What settings.json holds; _settings adds the environment overrides on top
        self._file_settings = Settings()
        self._settings = Settings()

        self.load()

    def load(self) -> Settings:
        """Load settings from disk, falling back to defaults"""
        with self.settings_lock:
            try:
                with open(self.settings_path, 'r', encoding='utf-8') as f:
                    raw = json.load(f)
                if not isinstance(raw, dict):
                    raise ValueError("settings root must be an object")
                self._file_settings = Settings(**raw)
                logger.info(f"Loaded settings from {self.settings_path}")
            except FileNotFoundError:
                logger.info(f"Settings file not found, writing defaults to {self.settings_path}")
                self._file_settings = Settings()
                self.save()
            except (json.JSONDecodeError, ValidationError, ValueError) as e:
                logger.warning(f"Invalid settings file {self.settings_path}: {e}. Using defaults")
                self._file_settings = Settings()
            except OSError as e:
                logger.warning(f"Cannot read settings file {self.settings_path}: {e}. Using defaults")
                self._file_settings = Settings()

            self._settings = self._apply_env_overrides(self._file_settings)
            return self._settings

    @staticmethod
    def _apply_env_overrides(settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        port = os.getenv("API_PORT")
        if port:
            try:
                overrides["api_port"] = int(port)
            except ValueError:
                logger.warning(f"Ignoring invalid API_PORT={port!r}")
        level = os.getenv("LOG_LEVEL")
        if level:
            overrides["log_level"] = level.upper()
        if not overrides:
            return settings
        return settings.model_copy(update=overrides)

    def save(self) -> bool:
        """Persist current settings atomically"""
        with self.settings_lock:
            tmp_path = self.settings_path.with_name(f"{self.settings_path.name}.tmp")
            try:
                self.settings_path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, 'w', encoding='utf-8') as f:
                    json.dump(self._file_settings.model_dump(), f, indent=2)
                os.replace(tmp_path, self.settings_path)
                return True
            except OSError as e:
                logger.error(f"Failed to save settings: {e}")
                return False

    @property
    def settings(self) -> Settings:
        with self.settings_lock:
            return self._settings

    def update(self, **changes: Any) -> Settings:
        """Validate and persist a partial update"""
        with self.settings_lock:
            merged = {**self._file_settings.model_dump(), **changes}
            self._file_settings = Settings(**merged)
            self._settings = self._apply_env_overrides(self._file_settings)
            self.save()
            return self._settings
