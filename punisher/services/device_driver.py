import os
import queue
import logging
import threading

import requests

from punisher.services.exceptions import DeviceCommandFailure


class DeviceDriver:
    """
    Fire-and-forget intensity commands for the haptic device.

    set_intensity() never blocks the caller: commands are queued and a
    background worker POSTs them to the device bridge. Only the latest queued
    value matters, so bursts are collapsed into a single request.
    Without DEVICE_ENDPOINT_URL the driver runs in mock mode and only logs.
    """

    def __init__(self, endpoint_url=None, timeout=2.0):
        self.endpoint_url = endpoint_url or os.getenv("DEVICE_ENDPOINT_URL")
        self.timeout = timeout
        self.logger = logging.getLogger("DeviceDriver")
        self.queue = queue.Queue()
        self.stop_event = threading.Event()
        self.last_commanded = None
        self.failure_count = 0
        self.worker = None

        if self.endpoint_url:
            self.worker = threading.Thread(target=self._worker_loop, daemon=True)
            self.worker.start()

    def set_intensity(self, value):
        """Enqueues an intensity command. Never raises on transport errors."""
        value = int(value)
        if value < 0:
            raise ValueError("Intensity must be >= 0")

        self.last_commanded = value
        if not self.endpoint_url:
            self.logger.info(f"[mock] Device intensity -> {value}")
            return

        self.queue.put(value)

    def send(self, value):
        """Synchronously pushes one intensity value to the device."""
        try:
            response = requests.post(
                self.endpoint_url,
                json={"strength": int(value)},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise DeviceCommandFailure(value, e) from e

    def _latest_queued(self, value):
        while True:
            try:
                newer = self.queue.get_nowait()
            except queue.Empty:
                return value
            self.queue.task_done()
            value = newer

    def _worker_loop(self):
        while not self.stop_event.is_set():
            try:
                value = self.queue.get(timeout=1.0)
            except queue.Empty:
                continue

            try:
                self.send(self._latest_queued(value))
            except DeviceCommandFailure as e:
                self.failure_count += 1
                self.logger.warning(str(e))
            finally:
                self.queue.task_done()

    def stop(self):
        """Stops the worker, then delivers whatever was still queued (e.g. the final baseline)."""
        self.stop_event.set()
        if self.worker is None:
            return
        self.worker.join(timeout=2.0)
        self._flush()

    def _flush(self):
        try:
            value = self.queue.get_nowait()
        except queue.Empty:
            return

        try:
            self.send(self._latest_queued(value))
        except DeviceCommandFailure as e:
            self.failure_count += 1
            self.logger.warning(f"Final command lost on shutdown: {e}")
        finally:
            self.queue.task_done()
