import json

import pytest
import yaml

from myterm.local.project_config import (PLACEHOLDER_COMMAND, ConfigError, find_config_path, guess_processes,
                                         init_project_config, load_project_config)
from myterm.local.supervisor import ProcessSpec


@pytest.mark.basic
def test_load_normalizes_defaults(tmp_path):
    (tmp_path / "myterm.yml").write_text(
        "name: shop\n"
        "processes:\n"
        "  - name: web\n"
        "    command: npm run dev\n"
        "    autostart: true\n"
        "  - name: worker\n"
        "    command: python worker.py\n"
    )
    project = load_project_config(tmp_path)
    assert project.name == "shop"
    assert project.processes == [
        ProcessSpec("web", "npm run dev", autostart=True, autorestart=False),
        ProcessSpec("worker", "python worker.py"),
    ]
    assert project.get("worker").command == "python worker.py"
    assert project.get("missing") is None


@pytest.mark.basic
def test_yaml_extension_is_found(tmp_path):
    (tmp_path / "myterm.yaml").write_text("name: alt\nprocesses: []\n")
    assert find_config_path(tmp_path).name == "myterm.yaml"
    assert load_project_config(tmp_path).processes == []


@pytest.mark.basic
@pytest.mark.parametrize("contents", [
    "name: x\nprocesses:\n  - name: a\n    command: one\n  - name: a\n    command: two\n",
    "name: x\nprocesses:\n  - name: a\n",
    "name: x\nprocesses: nope\n",
    "- just\n- a list\n",
    "name: [unclosed\n",
])
def test_invalid_configs_raise(tmp_path, contents):
    (tmp_path / "myterm.yml").write_text(contents)
    with pytest.raises(ConfigError):
        load_project_config(tmp_path)


@pytest.mark.basic
def test_missing_config_raises(tmp_path):
    with pytest.raises(ConfigError, match="Missing myterm.yml"):
        load_project_config(tmp_path)


@pytest.mark.basic
def test_procfile_wins_over_package_json(tmp_path):
    (tmp_path / "Procfile").write_text("# comment\nweb: gunicorn app:app\n\nworker: celery -A app worker\nbroken\n")
    (tmp_path / "package.json").write_text(json.dumps({"scripts": {"dev": "vite"}}))
    assert guess_processes(tmp_path) == [
        ProcessSpec("web", "gunicorn app:app", autorestart=True),
        ProcessSpec("worker", "celery -A app worker", autorestart=True),
    ]


@pytest.mark.basic
@pytest.mark.parametrize("lockfile, scripts, expected", [
    (None, {"dev": "vite", "start": "node ."}, ProcessSpec("dev", "npm run dev", autorestart=True)),
    (None, {"start": "node ."}, ProcessSpec("start", "npm start", autorestart=True)),
    ("pnpm-lock.yaml", {"dev": "vite"}, ProcessSpec("dev", "pnpm dev", autorestart=True)),
    ("yarn.lock", {"start": "node ."}, ProcessSpec("start", "yarn start", autorestart=True)),
    ("bun.lockb", {"dev": "vite"}, ProcessSpec("dev", "bun run dev", autorestart=True)),
])
def test_package_json_scripts(tmp_path, lockfile, scripts, expected):
    (tmp_path / "package.json").write_text(json.dumps({"scripts": scripts}))
    if lockfile:
        (tmp_path / lockfile).write_text("")
    assert guess_processes(tmp_path) == [expected]


@pytest.mark.basic
def test_placeholder_when_nothing_is_detected(tmp_path):
    (tmp_path / "package.json").write_text(json.dumps({"scripts": {"test": "jest"}}))
    assert guess_processes(tmp_path) == [ProcessSpec("dev", PLACEHOLDER_COMMAND)]


@pytest.mark.basic
def test_init_writes_config_and_refuses_to_overwrite(tmp_path):
    project_dir = tmp_path / "my-app"
    project_dir.mkdir()
    (project_dir / "Procfile").write_text("web: python -m http.server\n")

    project = init_project_config(project_dir)
    assert project.name == "my-app"

    written = yaml.safe_load((project_dir / "myterm.yml").read_text())
    assert written == {
        "name": "my-app",
        "processes": [{"name": "web", "command": "python -m http.server", "autostart": False, "autorestart": True}],
    }
    assert load_project_config(project_dir) == project

    with pytest.raises(ConfigError, match="already exists"):
        init_project_config(project_dir)
