import signal
import sys
import logging

class ShutdownHandler:
    """
    Centralized handler for graceful shutdown.
    Catches SIGINT/SIGTERM and stops registered services in reverse order,
    so the controller drops the device to baseline before the driver goes away.
    """
    def __init__(self, install_signals=True):
        self.services = []
        self.logger = logging.getLogger("ShutdownHandler")
        if install_signals:
            signal.signal(signal.SIGINT, self._handle_signal)
            signal.signal(signal.SIGTERM, self._handle_signal)

    def register(self, service):
        """Register a service that has a .shutdown() or .stop() method."""
        if hasattr(service, 'shutdown') or hasattr(service, 'stop'):
            self.services.append(service)
        else:
            self.logger.warning(f"Service {service} has neither shutdown() nor stop().")

    def stop_all(self):
        for service in reversed(self.services):
            name = service.__class__.__name__
            try:
                self.logger.info(f"Stopping {name}...")
                if hasattr(service, 'shutdown'):
                    service.shutdown()
                else:
                    service.stop()
            except Exception as e:
                self.logger.error(f"Error stopping {name}: {e}")
        self.services = []

    def _handle_signal(self, signum, frame):
        self.logger.info(f"Received signal {signum}. Shutting down...")
        self.stop_all()
        self.logger.info("Shutdown complete. Exiting.")
        sys.exit(0)
