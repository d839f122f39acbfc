import os
import time
import logging
import threading
from typing import Callable, Dict, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from myterm.local.config import effective_settings as config

log = logging.getLogger(__name__)


class ConfigChangeHandler(FileSystemEventHandler):
    """
    A watchdog event handler that reloads a project when its config file changes.

    Editors usually produce several events per save, so the callback fires once,
    `debounce_interval` seconds after the last relevant event.
    """

    def __init__(self, project_path: str, on_change: Callable[[str], None], debounce_interval: Optional[float] = None):
        super().__init__()
        self.project_path = project_path
        self.on_change = on_change
        self.debounce_interval = config.WATCHDOG_DEBOUNCE_SECONDS if debounce_interval is None else debounce_interval
        self.debounce_cache: Dict[str, float] = {}
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def _is_config_file(self, path: str) -> bool:
        return os.path.basename(path) in config.PROJECT_CONFIG_FILE_NAMES

    def on_any_event(self, event) -> None:
        """The main event handler method for watchdog, called on any file change."""
        if event.is_directory:
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        relevant = [p for p in paths if p and self._is_config_file(p)]
        if not relevant:
            return

        log.debug(f"Watchdog event: {event.event_type} on {relevant[0]}")
        with self._lock:
            self.debounce_cache[relevant[0]] = time.time()
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce_interval, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        try:
            self.on_change(self.project_path)
        except Exception as e:
            log.error(f"Reloading config of {self.project_path} failed: {e}", exc_info=True)

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class ProjectConfigWatcher:
    """One watchdog observer watching the directories of every open project."""

    def __init__(self, on_change: Callable[[str], None]) -> None:
        self.on_change = on_change
        self._observer: Optional[Observer] = None
        self._watches: Dict[str, tuple] = {}
        self._lock = threading.Lock()

    def _ensure_observer(self) -> Observer:
        if self._observer is None or not self._observer.is_alive():
            if self._observer is not None:
                log.error("Watchdog observer thread has stopped unexpectedly. Restarting observer.")
            self._observer = Observer()
            self._observer.daemon = True
            self._observer.start()
            for project_path, (handler, _) in list(self._watches.items()):
                self._watches[project_path] = (handler, self._observer.schedule(handler, project_path, recursive=False))
        return self._observer

    def watch(self, project_path: str) -> None:
        with self._lock:
            if project_path in self._watches:
                return
            observer = self._ensure_observer()
            handler = ConfigChangeHandler(project_path, self.on_change)
            try:
                watch = observer.schedule(handler, project_path, recursive=False)
            except OSError as e:
                log.warning(f"Cannot watch {project_path} for config changes: {e}")
                return
            self._watches[project_path] = (handler, watch)
            log.debug(f"Watching {project_path} for config changes.")

    def unwatch(self, project_path: str) -> None:
        with self._lock:
            entry = self._watches.pop(project_path, None)
            if entry is None:
                return
            handler, watch = entry
            handler.cancel()
            if self._observer is not None:
                try:
                    self._observer.unschedule(watch)
                except KeyError:
                    pass

    def stop(self) -> None:
        with self._lock:
            for handler, _ in self._watches.values():
                handler.cancel()
            self._watches.clear()
            if self._observer is not None:
                self._observer.stop()
                self._observer.join(timeout=5)
                self._observer = None
                log.info("Config watcher stopped.")
