import json
import logging
from pathlib import Path
from typing import Any, Dict, Tuple

import myterm.settings as default_settings

log = logging.getLogger(__name__)

_TRUTHY = ('true', '1', 't', 'yes', 'y', 'on')


def _coerce(current: Any, value: Any) -> Any:
    """Converts `value` to the type of the setting's current value."""
    if isinstance(current, bool):
        return value if isinstance(value, bool) else str(value).strip().lower() in _TRUTHY
    if isinstance(current, Path):
        return Path(value)
    if current is None:
        return value
    return type(current)(value)


class MergedSettings:
    """
    The supervisor's effective configuration.

    Values come from `myterm.settings` (which already applied `.env` and the
    environment); the keys listed in `MODIFIABLE_SETTINGS` may additionally be
    changed at runtime and are persisted to `overrides.json`.
    """

    def __init__(self, overrides_path: Path = None) -> None:
        self.OVERRIDES_JSON_PATH: Path = overrides_path or default_settings.OVERRIDES_JSON_PATH
        for key in dir(default_settings):
            if key.isupper() and key != "OVERRIDES_JSON_PATH":
                setattr(self, key, getattr(default_settings, key))
        self._apply_overrides()

    def _apply_overrides(self) -> None:
        path = self.OVERRIDES_JSON_PATH
        if not path.exists():
            return
        try:
            with path.open('r') as f:
                stored = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            log.error(f"Ignoring unreadable overrides file '{path}': {e}")
            return

        log.info(f"Applying supervisor overrides from {path}")
        for key, value in stored.items():
            if key not in self.MODIFIABLE_SETTINGS:
                log.warning(f"'{key}' cannot be overridden at runtime. Ignoring.")
                continue
            try:
                setattr(self, key, _coerce(getattr(self, key, None), value))
            except (ValueError, TypeError) as e:
                log.warning(f"Override '{key}={value}' has the wrong type ({e}). Keeping the default.")

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, default)

    def modifiable(self) -> Dict[str, Any]:
        """Current values of every runtime-modifiable setting, by name."""
        return {key: getattr(self, key, None) for key in sorted(self.MODIFIABLE_SETTINGS)}

    def update_setting(self, key: str, value: Any) -> Tuple[bool, str]:
        """
        Changes one modifiable setting and persists the modifiable set.

        :param key: The setting name (upper case).
        :param value: The new value, usually a string typed at the console.
        :return: A tuple of (success, human readable message).
        """
        if key not in self.MODIFIABLE_SETTINGS:
            log.warning(f"Rejected update of non-modifiable setting '{key}'.")
            return False, f"Setting '{key}' is not modifiable."
        try:
            new_value = _coerce(getattr(self, key, None), value)
        except (ValueError, TypeError) as e:
            log.error(f"Config update of '{key}' failed: {e}")
            return False, f"Could not convert value '{value}' for key '{key}'. Error: {e}"

        setattr(self, key, new_value)
        self._persist()
        log.info(f"Setting '{key}' changed to '{new_value}'.")
        return True, f"Setting '{key}' updated to '{new_value}'."

    def _persist(self) -> None:
        values = {k: (str(v) if isinstance(v, Path) else v) for k, v in self.modifiable().items()}
        try:
            self.OVERRIDES_JSON_PATH.parent.mkdir(parents=True, exist_ok=True)
            with self.OVERRIDES_JSON_PATH.open('w') as f:
                json.dump(values, f, indent=4)
        except IOError as e:
            log.error(f"Failed to write overrides file '{self.OVERRIDES_JSON_PATH}': {e}")


effective_settings = MergedSettings()
