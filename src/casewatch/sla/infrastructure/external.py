"""
SLA External Service Integrations
==================================

External services for the deadline engine:
- YAML config file watcher
- APScheduler for the daily run
"""

import threading
from pathlib import Path
from typing import Awaitable, Callable, Optional

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from pydantic import ValidationError
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler

from casewatch.core import ConfigurationException
from casewatch.shared.infrastructure.logging import get_logger
from casewatch.sla.application import ISLAConfigProvider
from casewatch.sla.domain import SLAConfig

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA config file changes."""

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def _matches(self, event) -> bool:
        if event.is_directory:
            return False
        return Path(event.src_path).resolve() == self.config_path.resolve()

    def on_modified(self, event):
        """Handle file modification event."""
        if self._matches(event):
            logger.info(f"Config file changed: {event.src_path}")
            self.config_manager.reload()

    def on_created(self, event):
        """Editors that write via rename surface as a create."""
        if self._matches(event):
            logger.info(f"Config file replaced: {event.src_path}")
            self.config_manager.reload()


class SLAConfigManager(ISLAConfigProvider):
    """
    Thread-safe SLA configuration manager with hot-reload support.

    Uses watchdog to monitor file changes and reload the defaults without
    restarting the service. A bad edit keeps the last good configuration.
    """

    def __init__(self):
        self._config: Optional[SLAConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> SLAConfig:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: If the file exists but cannot be parsed
        """
        self._path = Path(path)
        try:
            config = self._load_from_file(self._path)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid SLA config file: {self._path}",
                {"path": str(self._path), "error": str(e)}
            ) from e

        with self._lock:
            self._config = config
        logger.info(
            "SLA configuration loaded",
            extra={
                "path": str(self._path),
                "default_reminder_days": config.default_reminder_days,
                "default_escalation_role": config.default_escalation_role,
            }
        )
        return config

    def _load_from_file(self, path: Path) -> SLAConfig:
        """Load and parse YAML config file."""
        if not path.exists():
            logger.warning(f"SLA config file not found: {path}, using defaults")
            return SLAConfig()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise TypeError("SLA config root must be a mapping")

        # Accept both a flat file and one nested under "sla:"
        if isinstance(data.get("sla"), dict):
            data = data["sla"]

        return SLAConfig(**data)

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
            logger.error(
                "Failed to reload SLA config, keeping previous configuration",
                extra={"path": str(self._path), "error": str(e)}
            )
            return False

        with self._lock:
            self._config = new_config
        logger.info("SLA configuration reloaded successfully")
        return True

    def start_watching(self) -> None:
        """
        Start watching configuration file for changes.

        Skips watching if the file doesn't exist or the platform cannot
        deliver file events (some containers).
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                f"Config file doesn't exist, skipping file watch: {self._path}. "
                "Using default SLA configuration."
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(
                handler,
                str(self._path.resolve().parent),
                recursive=False
            )
            self._observer.start()
            logger.info(f"Started watching config file: {self._path}")
        except OSError as e:
            logger.warning(
                f"File watching not available, using static config: {e}"
            )
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching configuration file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def config(self) -> SLAConfig:
        """Get current configuration."""
        with self._lock:
            if self._config is None:
                raise RuntimeError("SLA configuration not loaded")
            return self._config

    def get_config(self) -> SLAConfig:
        return self.config


class SLAScheduler:
    """
    Wrapper for APScheduler for the daily SLA run.

    Manages the lifecycle of the scheduler and jobs. Overlapping fires are
    coalesced; the engine stays correct even if two runs do overlap.
    """

    def __init__(
        self,
        hour: int = 8,
        minute: int = 0,
        timezone: str = "Asia/Jakarta",
        job_id: str = "sla_daily"
    ):
        self.hour = hour
        self.minute = minute
        self.timezone = timezone
        self.job_id = job_id
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    def start(self, job_func: Callable[[], Awaitable[object]]) -> None:
        """Start the scheduler with the given coroutine function."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            job_func,
            CronTrigger(hour=self.hour, minute=self.minute, timezone=self.timezone),
            id=self.job_id,
            name="Daily SLA Job",
            misfire_grace_time=3600,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA scheduler started",
            extra={
                "hour": self.hour,
                "minute": self.minute,
                "timezone": self.timezone,
            }
        )

    def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
