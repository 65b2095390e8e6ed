"""Handle for the single background measurement worker."""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class LoopWorker:
    """Owns at most one background thread and its cooperative stop flag.

    The stop flag is advisory: the target is expected to check
    ``stop_requested`` between iterations. Nothing here interrupts a
    blocking call already in progress inside the target.
    """

    def __init__(self, name: str = "CounterLoop") -> None:
        self._name = name
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

    def start(self, target: Callable[[], None]) -> bool:
        """Start ``target`` on a new daemon thread.

        May be called from the worker thread itself once its target is done
        looping (e.g. from a handler raised on exit); that thread is about
        to finish and is replaced.

        Returns:
            True if started, False if another worker thread is still alive
        """
        with self._lock:
            current = self._thread
            if (
                current is not None
                and current.is_alive()
                and current is not threading.current_thread()
            ):
                logger.debug("Worker already running, start ignored")
                return False

            self._stop_event.clear()
            self._thread = threading.Thread(
                target=target,
                name=self._name,
                daemon=True,
            )
            self._thread.start()
            logger.debug(f"Started worker thread {self._name}")
            return True

    def request_stop(self) -> None:
        """Ask the running target to exit after its current iteration."""
        self._stop_event.set()

    def clear_stop(self) -> None:
        """Reset the stop flag before a new loop."""
        self._stop_event.clear()

    @property
    def stop_requested(self) -> bool:
        """True once request_stop() was called and not yet cleared."""
        return self._stop_event.is_set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker thread to finish.

        Args:
            timeout: Max seconds to wait, None to wait indefinitely

        Returns:
            True if no worker is running afterwards
        """
        with self._lock:
            thread = self._thread

        if thread is None:
            return True
        if thread is threading.current_thread():
            # Called from a handler on the worker itself
            return False

        thread.join(timeout=timeout)
        if thread.is_alive():
            logger.warning(f"Worker thread {self._name} still running after join")
            return False
        return True

    def is_running(self) -> bool:
        """Check if the worker thread is alive."""
        with self._lock:
            return self._thread is not None and self._thread.is_alive()
