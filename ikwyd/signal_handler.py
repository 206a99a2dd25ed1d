"""Signal handling for graceful shutdown during a backup run.

This module provides the SignalHandler class that handles SIGTERM and
SIGINT, making sure the rsync subprocess is stopped and the vault lock is
released when the process is interrupted. The staging area is left as it
is: the next run continues from it.
"""

import signal
import subprocess
import sys
import threading
import logging
from typing import Any, Dict, Optional


class SignalHandler:
    """
    Handles OS signals for graceful shutdown during a backup run.

    Usage:
        handler = SignalHandler()
        handler.register(lock=vault_lock)
        handler.set_rsync_process(process)
        # ... do backup ...
        handler.unregister()
    """

    SIGNALS = (signal.SIGTERM, signal.SIGINT)

    def __init__(self):
        """Initialize SignalHandler with empty state."""
        self._lock: Optional[Any] = None  # VaultLock
        self._rsync_process: Optional[subprocess.Popen] = None
        self._original_handlers: Dict[int, Any] = {}
        self._registered = False
        self._logger = logging.getLogger(__name__)

    def register(self, lock: Optional[Any] = None) -> None:
        """
        Register signal handlers for SIGTERM and SIGINT.

        Signal handlers can only be registered from the main thread. From
        any other thread registration is skipped, but the lock is still
        tracked so cleanup() works.

        Args:
            lock: Vault lock to release on signal
        """
        self._lock = lock
        self._registered = True

        if threading.current_thread() is not threading.main_thread():
            self._logger.debug("Signal handlers not registered: not running in main thread")
            return

        try:
            for sig in self.SIGNALS:
                self._original_handlers[sig] = signal.signal(sig, self._handle_signal)
            self._logger.debug("Signal handlers registered")
        except ValueError as e:
            self._logger.debug(f"Signal handlers not registered: {e}")

    def set_rsync_process(self, process: Optional[subprocess.Popen]) -> None:
        """Set the rsync subprocess to terminate on signal."""
        self._rsync_process = process

    def unregister(self) -> None:
        """Restore original signal handlers."""
        if not self._registered:
            return

        if self._original_handlers and threading.current_thread() is threading.main_thread():
            try:
                for sig, handler in self._original_handlers.items():
                    signal.signal(sig, handler)
            except ValueError:
                pass

        self._original_handlers.clear()
        self._lock = None
        self._rsync_process = None
        self._registered = False
        self._logger.debug("Signal handlers unregistered")

    def _handle_signal(self, signum: int, frame: Any) -> None:
        """
        Handle termination signal.

        Process:
        1. Terminate rsync subprocess if running
        2. Release lock
        3. Exit with 128 + signal_number (Unix convention)
        """
        sig_name = signal.Signals(signum).name
        self._logger.warning(f"Received {sig_name}, stopping; staging area kept for the next run")

        self.cleanup()

        exit_code = 128 + signum
        self._logger.info(f"Exiting with code {exit_code}")
        sys.exit(exit_code)

    @property
    def is_registered(self) -> bool:
        """Return whether signal handlers are currently registered."""
        return self._registered

    def cleanup(self) -> bool:
        """
        Stop rsync and release the lock without exiting.

        Returns:
            True if anything was cleaned up
        """
        cleaned = False

        if self._rsync_process is not None:
            try:
                self._rsync_process.terminate()
                try:
                    self._rsync_process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    self._rsync_process.kill()
                    self._rsync_process.wait()
                self._logger.debug("Rsync subprocess terminated")
                cleaned = True
            except OSError as e:
                self._logger.warning(f"Error terminating rsync process: {e}")

        if self._lock is not None:
            try:
                self._lock.release()
                cleaned = True
            except OSError as e:
                self._logger.warning(f"Error releasing lock: {e}")

        return cleaned
