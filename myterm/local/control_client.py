import json
import logging
import requests
from typing import Any, Dict, List, Optional

from myterm.local.config import effective_settings as config

log = logging.getLogger(__name__)


class ControlClientError(Exception):
    """A control API call failed; `code` is the error code returned by the console, if any."""

    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code
        self.status = status


class ControlClient:
    """
    Talks to the control API of a running MyTerm console.

    Used by the non-interactive `myterm <command>` mode, so a second terminal
    can drive the processes supervised by the first one.
    """

    def __init__(self, host: Optional[str] = None, port: Optional[int] = None, timeout: float = 5.0) -> None:
        self.base_url = f"http://{host or config.CONTROL_API_HOST}:{port or config.CONTROL_API_PORT}/api"
        self.timeout = timeout
        self.session = requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=kwargs.pop("timeout", self.timeout), **kwargs)
        except requests.exceptions.RequestException as e:
            log.debug(f"Control API request {method} {url} failed: {e}")
            raise ControlClientError(f"Could not reach the MyTerm console at {self.base_url}: {e}") from e

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError):
            data = None

        if response.status_code >= 400:
            detail = data.get("detail") if isinstance(data, dict) else response.text
            code = data.get("error") if isinstance(data, dict) else None
            raise ControlClientError(detail or f"HTTP {response.status_code}", code, response.status_code)
        return data

    def is_available(self) -> bool:
        """Returns True if a console answers on the configured address."""
        try:
            self._request("GET", "/projects", timeout=1)
            return True
        except ControlClientError:
            return False

    #* --- Projects ---
    def list_projects(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/projects")["projects"]

    def open_project(self, project_path: str, init: bool = False) -> Dict[str, Any]:
        return self._request("POST", "/projects", json={"project_path": project_path, "init": init})

    def close_project(self, project: str) -> Dict[str, Any]:
        return self._request("DELETE", "/projects", params={"project": project})

    #* --- Processes ---
    def list_processes(self, project: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"project": project} if project else None
        return self._request("GET", "/processes", params=params)["processes"]

    def start(self, project: str, name: str, command: Optional[str] = None,
              autorestart: Optional[bool] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"project_path": project, "process_name": name}
        if command is not None:
            payload["command"] = command
        if autorestart is not None:
            payload["autorestart"] = autorestart
        return self._request("POST", "/processes/start", json=payload)

    def stop(self, project: str, name: str) -> Dict[str, Any]:
        return self._request("POST", "/processes/stop", json={"project_path": project, "process_name": name})

    def restart(self, project: str, name: str) -> Dict[str, Any]:
        return self._request("POST", "/processes/restart", json={"project_path": project, "process_name": name})

    def write_input(self, project: str, name: str, text: str) -> int:
        payload = {"project_path": project, "process_name": name, "input": text}
        return self._request("POST", "/processes/input", json=payload)["written"]

    def logs(self, project: str, name: str, lines: Optional[int] = None) -> List[str]:
        params: Dict[str, Any] = {"project": project, "name": name}
        if lines is not None:
            params["lines"] = lines
        return self._request("GET", "/processes/logs", params=params)["lines"]
