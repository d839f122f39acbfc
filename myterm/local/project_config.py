"""
Reads, validates and initializes the per-project `myterm.yml` files.

A project config names the project and lists its processes:

    name: shop
    processes:
      - name: web
        command: npm run dev
        autostart: true
        autorestart: true
"""
import os
import json
import logging
from pathlib import Path
from typing import List, Optional, Union

import yaml

from myterm.local.config import effective_settings as config
from myterm.local.supervisor.errors import InvalidConfig
from myterm.local.supervisor.models import ProcessSpec, ProjectConfig
from myterm.local.supervisor.supervisor import validate_project

log = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

PLACEHOLDER_COMMAND = "echo 'Edit myterm.yml to add processes' && sleep 2"


class ConfigError(Exception):
    """The project config is missing, unreadable or invalid."""

    def __init__(self, message: str, path: Optional[Path] = None) -> None:
        super().__init__(f"{message} ({path})" if path else message)
        self.path = path


#* --- Lookup ---
def config_path_candidates(project_path: PathLike) -> List[Path]:
    return [Path(project_path) / name for name in config.PROJECT_CONFIG_FILE_NAMES]


def find_config_path(project_path: PathLike) -> Optional[Path]:
    """Returns the first existing config file of the project, if any."""
    for candidate in config_path_candidates(project_path):
        if candidate.is_file():
            return candidate
    return None


def detect_project_name(project_path: PathLike) -> str:
    return Path(os.path.abspath(os.fspath(project_path))).name or "project"


#* --- Parsing ---
def parse_project_config(data, source: Optional[Path] = None) -> ProjectConfig:
    """
    Normalizes the parsed YAML document into a `ProjectConfig`.

    :raises ConfigError: If the document does not have the expected shape.
    """
    if not isinstance(data, dict):
        raise ConfigError("Config must be a mapping with 'name' and 'processes'", source)

    processes = data.get("processes") or []
    if not isinstance(processes, list):
        raise ConfigError("'processes' must be a list", source)

    specs = []
    for index, item in enumerate(processes):
        if not isinstance(item, dict):
            raise ConfigError(f"Process #{index + 1} must be a mapping", source)
        specs.append(ProcessSpec.from_dict(item))

    name = str(data.get("name") or (detect_project_name(source.parent) if source else "project"))
    project = ProjectConfig(name=name, processes=specs)
    try:
        validate_project(project)
    except InvalidConfig as e:
        raise ConfigError(str(e), source) from e
    return project


def load_project_config(project_path: PathLike) -> ProjectConfig:
    """
    Loads the project's `myterm.yml` (or `myterm.yaml`).

    :param project_path: The project directory.
    :return ProjectConfig: The normalized config.
    :raises ConfigError: If no config exists or it cannot be parsed.
    """
    path = find_config_path(project_path)
    if path is None:
        raise ConfigError(f"Missing {config.DEFAULT_PROJECT_CONFIG_FILE_NAME}", Path(project_path))

    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read config: {e}", path) from e

    project = parse_project_config(data, path)
    log.debug(f"Loaded config for '{project.name}' from {path} ({len(project.processes)} process(es)).")
    return project


#* --- Initialization ---
def _guess_from_procfile(project_path: Path) -> List[ProcessSpec]:
    procfile = project_path / "Procfile"
    if not procfile.is_file():
        return []
    specs = []
    try:
        lines = procfile.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        log.warning(f"Could not read {procfile}: {e}")
        return []
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#") or ":" not in line:
            continue
        name, command = (part.strip() for part in line.split(":", 1))
        if name and command:
            specs.append(ProcessSpec(name, command, autostart=False, autorestart=True))
    return specs


def _detect_package_manager(project_path: Path) -> str:
    if (project_path / "pnpm-lock.yaml").exists():
        return "pnpm"
    if (project_path / "yarn.lock").exists():
        return "yarn"
    if (project_path / "bun.lockb").exists():
        return "bun"
    return "npm"


def _guess_from_package_json(project_path: Path) -> List[ProcessSpec]:
    package_json = project_path / "package.json"
    if not package_json.is_file():
        return []
    try:
        scripts = json.loads(package_json.read_text(encoding="utf-8")).get("scripts") or {}
    except (OSError, ValueError, AttributeError) as e:
        log.warning(f"Could not read scripts from {package_json}: {e}")
        return []

    if isinstance(scripts.get("dev"), str):
        script = "dev"
    elif isinstance(scripts.get("start"), str):
        script = "start"
    else:
        return []

    commands = {
        "npm": {"dev": "npm run dev", "start": "npm start"},
        "yarn": {"dev": "yarn dev", "start": "yarn start"},
        "pnpm": {"dev": "pnpm dev", "start": "pnpm start"},
        "bun": {"dev": "bun run dev", "start": "bun run start"},
    }
    command = commands[_detect_package_manager(project_path)][script]
    return [ProcessSpec(script, command, autostart=False, autorestart=True)]


def guess_processes(project_path: PathLike) -> List[ProcessSpec]:
    """
    Guesses the processes of a project without a config.

    A Procfile wins over package.json scripts; without either a placeholder
    `dev` entry is returned.
    """
    project_path = Path(project_path)
    specs = _guess_from_procfile(project_path) or _guess_from_package_json(project_path)
    if specs:
        return specs
    return [ProcessSpec("dev", PLACEHOLDER_COMMAND)]


def init_project_config(project_path: PathLike) -> ProjectConfig:
    """
    Writes a new `myterm.yml` built from `guess_processes()`.

    :raises ConfigError: If a config already exists or the file cannot be written.
    """
    project_path = Path(os.path.abspath(os.fspath(project_path)))
    existing = find_config_path(project_path)
    if existing is not None:
        raise ConfigError("Config already exists", existing)

    project = ProjectConfig(name=detect_project_name(project_path), processes=guess_processes(project_path))
    path = project_path / config.DEFAULT_PROJECT_CONFIG_FILE_NAME
    try:
        with path.open("w", encoding="utf-8") as f:
            yaml.safe_dump(project.to_dict(), f, sort_keys=False)
    except OSError as e:
        raise ConfigError(f"Could not write config: {e}", path) from e

    log.info(f"Created {path} with {len(project.processes)} process(es).")
    return project


class ConfigResolver:
    """Resolves project directories to configs; the workspace's seam for config I/O."""

    def load(self, project_path: PathLike) -> ProjectConfig:
        return load_project_config(project_path)

    def init(self, project_path: PathLike) -> ProjectConfig:
        return init_project_config(project_path)

    def find(self, project_path: PathLike) -> Optional[Path]:
        return find_config_path(project_path)
