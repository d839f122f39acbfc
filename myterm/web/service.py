import asyncio
import logging
import threading
from typing import Optional

from hypercorn.asyncio import serve
from hypercorn.config import Config as HypercornConfig

from myterm.local.config import effective_settings as config
from myterm.local.workspace import Workspace
from myterm.web.server import create_app

log = logging.getLogger(__name__)


class ControlAPIService:
    """
    Serves the control API with Hypercorn on a dedicated thread of the console process.

    The server runs its own event loop and stops when `stop()` sets its
    shutdown trigger.
    """

    def __init__(self, workspace: Workspace, host: Optional[str] = None, port: Optional[int] = None) -> None:
        self.app = create_app(workspace)
        self.host = host or config.CONTROL_API_HOST
        self.port = port or config.CONTROL_API_PORT
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stopping: Optional[asyncio.Event] = None
        self._ready = threading.Event()

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def _hypercorn_config(self) -> HypercornConfig:
        hypercorn_config = HypercornConfig()
        hypercorn_config.bind = [f"{self.host}:{self.port}"]
        hypercorn_config.accesslog = None
        hypercorn_config.errorlog = logging.getLogger("hypercorn.error")
        hypercorn_config.graceful_timeout = 1.0
        return hypercorn_config

    async def _serve(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._stopping = asyncio.Event()
        self._ready.set()
        await serve(self.app, self._hypercorn_config(), shutdown_trigger=self._stopping.wait)

    def _run(self) -> None:
        try:
            asyncio.run(self._serve())
        except OSError as e:
            log.error(f"Control API could not listen on {self.url}: {e}")
        except Exception as e:
            log.critical(f"Control API service crashed: {e}", exc_info=True)
        finally:
            self._ready.set()
            log.info("Control API service stopped.")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._ready.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="ControlAPI")
        self._thread.start()
        self._ready.wait(timeout=5)
        log.info(f"Control API listening on {self.url}")

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        loop, stopping = self._loop, self._stopping
        if loop is not None and stopping is not None and not loop.is_closed():
            try:
                loop.call_soon_threadsafe(stopping.set)
            except RuntimeError:
                log.debug("Control API loop already closed.")
        self._thread.join(timeout)
        self._thread = None
