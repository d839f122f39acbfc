import os
import atexit
import logging
import threading
from typing import Dict, List, Optional, Union

from myterm.local.config import effective_settings as config
from myterm.local.project_config import ConfigError, ConfigResolver
from myterm.local.project_watcher import ProjectConfigWatcher
from myterm.local.supervisor import ProcessSupervisor, ProjectConfig, ShutdownReport
from myterm.log.buffer import LogBuffer
from myterm.log.forwarder import ProcessLogForwarder

log = logging.getLogger(__name__)


class UnknownProject(LookupError):
    """No open project matches the given name or path."""

    def __init__(self, ref: str) -> None:
        super().__init__(f"No open project matches '{ref}'")
        self.ref = ref


class Workspace:
    """
    The set of open projects and everything wired around the supervisor.

    The workspace owns the supervisor, the log history buffer, the log
    forwarder and the config watcher, and it is the host of the application
    exit: `shutdown()` must run before the process exits. It is also
    registered with `atexit` as a backstop.
    """

    def __init__(
        self,
        supervisor: Optional[ProcessSupervisor] = None,
        resolver: Optional[ConfigResolver] = None,
        watch_configs: Optional[bool] = None,
        forward_logs: bool = True,
        register_atexit: bool = True,
    ) -> None:
        self.supervisor = supervisor or ProcessSupervisor()
        self.resolver = resolver or ConfigResolver()
        self.projects: Dict[str, ProjectConfig] = {}
        self._lock = threading.RLock()
        self._shutdown_report: Optional[ShutdownReport] = None

        self.log_buffer = LogBuffer()
        self.supervisor.logs.subscribe(self.log_buffer.append)

        self.project_names: Dict[str, str] = {}
        self.forwarder = ProcessLogForwarder(self.project_names)
        if forward_logs:
            self.forwarder.attach(self.supervisor.logs)

        watch = config.WATCH_PROJECT_CONFIG if watch_configs is None else watch_configs
        self.watcher = ProjectConfigWatcher(self._on_config_changed) if watch else None

        if register_atexit:
            atexit.register(self.shutdown)

    #* --- Project Lookup ---
    def find_project(self, ref: Union[str, os.PathLike]) -> str:
        """
        Resolves a project reference to its path.

        :param ref: A project path, or the name of an open project.
        :return str: The absolute project path.
        :raises UnknownProject: If nothing matches.
        """
        ref = os.fspath(ref)
        with self._lock:
            path = os.path.abspath(os.path.expanduser(ref))
            if path in self.projects:
                return path
            matches = [p for p, project in self.projects.items() if project.name == ref]
        if len(matches) == 1:
            return matches[0]
        raise UnknownProject(ref)

    def list_projects(self) -> List[Dict[str, object]]:
        with self._lock:
            items = list(self.projects.items())
        return [
            {"project_path": path, "name": project.name, "processes": [p.name for p in project.processes]}
            for path, project in items
        ]

    #* --- Project Lifecycle ---
    def open_project(self, project_path: Union[str, os.PathLike], autostart: bool = True) -> ProjectConfig:
        """
        Loads a project's config, registers its processes and starts the autostart ones.

        :raises ConfigError: If the directory or its config is missing or invalid.
        """
        path = os.path.abspath(os.path.expanduser(os.fspath(project_path)))
        if not os.path.isdir(path):
            raise ConfigError("Project directory does not exist", path)

        project = self.resolver.load(path)
        with self._lock:
            self.supervisor.register_project(path, project)
            self.projects[path] = project
            self.project_names[path] = project.name
        if self.watcher is not None:
            self.watcher.watch(path)
        log.info(f"Opened project '{project.name}' ({path}).")

        if autostart:
            self.supervisor.start_autostart(path)
        return project

    def init_project(self, project_path: Union[str, os.PathLike], autostart: bool = False) -> ProjectConfig:
        """Creates a `myterm.yml` for a directory without one, then opens it."""
        path = os.path.abspath(os.path.expanduser(os.fspath(project_path)))
        self.resolver.init(path)
        return self.open_project(path, autostart=autostart)

    def close_project(self, ref: Union[str, os.PathLike]) -> ProjectConfig:
        """
        Stops every process of the project and forgets it.

        :raises SignalFailed: After the project is closed, if a process group could not be signalled.
        """
        path = self.find_project(ref)
        if self.watcher is not None:
            self.watcher.unwatch(path)
        result = self.supervisor.remove_project(path)
        with self._lock:
            project = self.projects.pop(path)
            self.project_names.pop(path, None)
        self.log_buffer.forget(path)
        log.info(f"Closed project '{project.name}'.")
        if result.failures:
            raise result.failures[0]
        return project

    def reload_project(self, ref: Union[str, os.PathLike]) -> ProjectConfig:
        """
        Re-reads the project config and applies it.

        Running processes keep their current command until they are restarted.
        """
        path = self.find_project(ref)
        project = self.resolver.load(path)
        with self._lock:
            self.supervisor.register_project(path, project)
            self.projects[path] = project
            self.project_names[path] = project.name
        log.info(f"Reloaded config of '{project.name}'.")
        return project

    def _on_config_changed(self, project_path: str) -> None:
        with self._lock:
            if project_path not in self.projects:
                return
        try:
            self.reload_project(project_path)
        except ConfigError as e:
            log.error(f"Config change ignored: {e}")

    #* --- Shutdown ---
    @property
    def is_shut_down(self) -> bool:
        return self._shutdown_report is not None

    def shutdown(self) -> ShutdownReport:
        """
        Stops every supervised process and the config watcher.

        Safe to call more than once; later calls return the first report.
        """
        with self._lock:
            if self._shutdown_report is not None:
                return self._shutdown_report
            if self.watcher is not None:
                self.watcher.stop()
            self._shutdown_report = self.supervisor.shutdown_all()
            return self._shutdown_report
