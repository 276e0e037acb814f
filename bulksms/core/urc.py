"""
Unsolicited Result Code (URC) handler.

Queues URCs from the reader thread and dispatches them on a worker thread,
so handlers are free to issue AT commands of their own.
"""

import logging
import queue
import threading
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

# Type alias for URC callbacks
URCCallback = Callable[[str], None]


class URCHandler:
    """
    Handles unsolicited result codes from the modem.

    Features:
    - Bounded queue to prevent memory issues
    - Prefix -> callback routing with a fallback for unrecognized lines
    - Dedicated dispatcher thread
    - Error handling for misbehaving callbacks
    """

    def __init__(
        self,
        max_queue_size: int = 1000,
        log_urcs: bool = False
    ) -> None:
        """
        Initialize URC handler.

        Args:
            max_queue_size: Maximum number of URCs to queue (prevents memory leak)
            log_urcs: Whether to log URCs at INFO level
        """
        self.log_urcs = log_urcs
        self._urc_queue: "queue.Queue[Optional[str]]" = queue.Queue(maxsize=max_queue_size)

        # Callback registry: prefix -> callback function
        self._callbacks: Dict[str, URCCallback] = {}
        self._fallback: Optional[URCCallback] = None

        self._lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None

        logger.info(f"Initialized URC handler (max_queue_size={max_queue_size})")

    def register_callback(self, prefix: str, callback: URCCallback) -> None:
        """
        Register a callback for URCs matching a prefix.

        Args:
            prefix: URC prefix to match (e.g., "+CMTI")
            callback: Function to call when URC is received.
                     Signature: callback(line: str) -> None
        """
        with self._lock:
            self._callbacks[prefix] = callback
            logger.info(f"Registered URC callback for prefix: {prefix}")

    def set_fallback(self, callback: Optional[URCCallback]) -> None:
        """Set the callback for lines no prefix matches."""
        with self._lock:
            self._fallback = callback

    def start(self) -> None:
        """Start the dispatcher thread."""
        if self._worker and self._worker.is_alive():
            return
        self._worker = threading.Thread(
            target=self._dispatch_loop,
            daemon=True,
            name="URCDispatcherThread"
        )
        self._worker.start()

    def stop(self, timeout: float = 1.0) -> None:
        """Stop the dispatcher thread after the URCs already queued."""
        if not self._worker:
            return
        try:
            self._urc_queue.put_nowait(None)
        except queue.Full:
            logger.warning("URC queue full while stopping")
        if self._worker is not threading.current_thread():
            self._worker.join(timeout=timeout)
            if self._worker.is_alive():
                logger.warning("URC dispatcher did not terminate in time")
        self._worker = None

    def handle_urc(self, line: str) -> None:
        """
        Queue a URC line for dispatch.

        Args:
            line: URC line to handle
        """
        if self.log_urcs:
            logger.info(f"URC received: {line}")
        else:
            logger.debug(f"URC received: {line}")

        try:
            self._urc_queue.put_nowait(line)
        except queue.Full:
            logger.error(f"URC queue full, dropping: {line}")

    def _dispatch_loop(self) -> None:
        while True:
            line = self._urc_queue.get()
            if line is None:
                break
            self._dispatch_callbacks(line)

    def _dispatch_callbacks(self, line: str) -> None:
        """
        Dispatch URC to the matching callback, or the fallback.

        Args:
            line: URC line to dispatch
        """
        with self._lock:
            matches = [
                (prefix, cb) for prefix, cb in self._callbacks.items()
                if line.startswith(prefix)
            ]
            if not matches and self._fallback is not None:
                matches = [("*", self._fallback)]

        for prefix, callback in matches:
            try:
                callback(line)
                logger.debug(f"URC callback for '{prefix}' executed successfully")
            except Exception as e:
                logger.error(f"URC callback for '{prefix}' failed: {e}", exc_info=True)

    def queue_size(self) -> int:
        """
        Get current queue size.

        Returns:
            Number of URCs waiting for dispatch
        """
        return self._urc_queue.qsize()
