import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

from punisher.services.exceptions import MemoryReadError


@dataclass(frozen=True)
class SeatPositions:
    """Which seat the local player occupies. 0 means unknown."""
    networked_seat: int = 0
    local_seat: int = 0

    def own_seat(self, is_local_match):
        return self.local_seat if is_local_match else self.networked_seat


@dataclass(frozen=True)
class PointerChain:
    """Module-relative base offset followed by pointer dereference offsets."""
    base_offset: int
    offsets: Tuple[int, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class GameProfile:
    process_name: str
    module_name: str
    player1_health: PointerChain
    player2_health: PointerChain
    networked_seat: PointerChain
    local_seat: PointerChain

    def address_specs(self):
        return (self.player1_health, self.player2_health, self.networked_seat, self.local_seat)


GGST_PROFILE = GameProfile(
    process_name="GGST-Win64-Shipping.exe",
    module_name="GGST-Win64-Shipping.exe",
    player1_health=PointerChain(0x051B4158, (0x1C0, 0x28, 0x1220)),
    player2_health=PointerChain(0x051B4158, (0x1C0, 0x1A0, 0x1220)),
    networked_seat=PointerChain(0x4D383F4),
    local_seat=PointerChain(0x4541FCC),
)

HealthCallback = Callable[[int, int, int], None]


class MemoryInspector:
    """
    Watches both players' health and the local seat numbers.

    Reading another process is delegated to `attach`, a factory called as
    attach(process_name, module_name, address_specs) that returns a reader with
    read_health(player_id) -> int, read_seats() -> SeatPositions and close().
    Readers raise MemoryReadError when a value cannot be resolved (no match in
    progress, game restarted...); the pollers then back off and re-resolve.

    Health callbacks are invoked from the poller threads.
    """

    HEALTH_POLL_INTERVAL = 0.1
    SEAT_POLL_INTERVAL = 0.5
    RETRY_DELAY = 1.0
    PLAYER_IDS = (1, 2)

    def __init__(self, attach=None):
        self.attach = attach
        self.logger = logging.getLogger("MemoryInspector")
        self._callback: Optional[HealthCallback] = None
        self._reader = None
        self._threads = []
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._health = {player_id: 0 for player_id in self.PLAYER_IDS}
        self._seats = SeatPositions()

    def subscribe(self, callback: HealthCallback):
        """Registers the single receiver of (player_id, new_health, old_health)."""
        self._callback = callback

    def start(self, process_name, module_name, *address_specs) -> bool:
        if self.is_running:
            return True
        if self.attach is None:
            self.logger.error(f"No memory reader configured; cannot inspect {process_name}.")
            return False

        try:
            reader = self.attach(process_name, module_name, address_specs)
        except (MemoryReadError, OSError) as e:
            self.logger.warning(f"Could not attach to {process_name}/{module_name}: {e}")
            return False
        if reader is None:
            return False

        self._reader = reader
        self._stop_event.clear()
        self._threads = [
            threading.Thread(target=self._poll_health, args=(reader, player_id), daemon=True)
            for player_id in self.PLAYER_IDS
        ]
        self._threads.append(threading.Thread(target=self._poll_seats, args=(reader,), daemon=True))
        for thread in self._threads:
            thread.start()

        self.logger.info(f"Inspecting {process_name} ({len(address_specs)} address specs).")
        return True

    @property
    def is_running(self):
        return any(thread.is_alive() for thread in self._threads)

    def get_seat_positions(self) -> SeatPositions:
        with self._lock:
            return self._seats

    def get_player_health(self, player_id) -> int:
        with self._lock:
            return self._health.get(player_id, 0)

    def stop_inspection(self):
        self._stop_event.set()
        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join(timeout=2.0)
        self._threads = []

        reader, self._reader = self._reader, None
        if reader is not None and hasattr(reader, "close"):
            reader.close()

        with self._lock:
            self._health = {player_id: 0 for player_id in self.PLAYER_IDS}
            self._seats = SeatPositions()

    def _emit(self, player_id, new_health, old_health):
        callback = self._callback
        if callback is None:
            return
        try:
            callback(player_id, new_health, old_health)
        except Exception:
            self.logger.exception(f"Health callback failed for player {player_id}")

    def _poll_health(self, reader, player_id):
        last_health = None

        while not self._stop_event.is_set():
            try:
                new_health = reader.read_health(player_id)
            except Exception as e:
                if isinstance(e, MemoryReadError):
                    self.logger.debug(f"Player {player_id} health unavailable: {e}")
                else:
                    self.logger.exception(f"Reading player {player_id} health failed; retrying.")
                last_health = None
                with self._lock:
                    self._health[player_id] = 0
                self._stop_event.wait(self.RETRY_DELAY)
                continue

            # First read after (re)resolving only primes the baseline.
            if last_health is not None and new_health != last_health:
                self._emit(player_id, new_health, last_health)
            with self._lock:
                self._health[player_id] = new_health
            last_health = new_health

            self._stop_event.wait(self.HEALTH_POLL_INTERVAL)

    def _poll_seats(self, reader):
        while not self._stop_event.is_set():
            try:
                seats = reader.read_seats()
            except MemoryReadError as e:
                self.logger.debug(f"Seat positions unavailable: {e}")
                seats = SeatPositions()
            except Exception:
                self.logger.exception("Reading seat positions failed; retrying.")
                with self._lock:
                    self._seats = SeatPositions()
                self._stop_event.wait(self.RETRY_DELAY)
                continue
            with self._lock:
                self._seats = seats
            self._stop_event.wait(self.SEAT_POLL_INTERVAL)
