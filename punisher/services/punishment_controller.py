import math
import queue
import logging
import threading
from collections import deque
from dataclasses import dataclass, asdict
from datetime import datetime

from punisher.services.decay_timer import DecayTimer
from punisher.services.exceptions import InspectorUnavailable
from punisher.services.memory_inspector import GGST_PROFILE, SeatPositions
from punisher.services.settings import PunishmentSettings


@dataclass(frozen=True)
class HealthEvent:
    player_id: int
    new_health: int
    old_health: int

    @property
    def damage(self):
        return self.old_health - self.new_health


@dataclass(frozen=True)
class PunishmentRecord:
    timestamp: str
    player_id: int
    damage: int
    intensity: int
    rule: str

    def to_dict(self):
        return asdict(self)


class PunishmentController:
    """
    Turns health drops into device intensity commands.

    Event flow:
        MemoryInspector thread -> on_health_changed() -> bounded queue
        -> event worker -> process_event() under the state lock -> DeviceDriver

    A qualifying hit either raises the intensity outright (a harder hit than the
    one currently punishing) or, if it is weaker or equal, escalates the running
    punishment by combo_increment. Every qualifying hit restarts the decay
    window; when it elapses the device goes back to the baseline intensity.
    """

    # Damage at or below this is treated as chip damage from blocking (or healing).
    CHIP_DAMAGE_THRESHOLD = 10
    EVENT_QUEUE_SIZE = 256
    HISTORY_SIZE = 50

    RULE_DIRECT = "direct"
    RULE_COMBO = "combo"

    def __init__(self, inspector, device, settings=None, decay_timer=None, profile=GGST_PROFILE):
        self.inspector = inspector
        self.device = device
        self.settings = settings or PunishmentSettings()
        self.decay_timer = decay_timer or DecayTimer()
        self.profile = profile
        self.logger = logging.getLogger("PunishmentController")

        self.monitoring = False
        self.current_intensity = 0
        self.history = deque(maxlen=self.HISTORY_SIZE)

        self._state_lock = threading.Lock()
        self._lifecycle_lock = threading.Lock()
        self._events = queue.Queue(maxsize=self.EVENT_QUEUE_SIZE)
        self._stop_event = threading.Event()
        self._worker_thread = threading.Thread(target=self._event_worker, daemon=True)
        self._worker_thread.start()

    def start(self, settings=None):
        """
        Begins a monitoring session.

        Returns:
            True if a session was started, False if one was already running.
        Raises:
            InspectorUnavailable if the memory inspector could not start.
        """
        with self._lifecycle_lock, self._state_lock:
            if self.monitoring:
                return False
            if settings is not None:
                self.settings = settings

            self.inspector.subscribe(self.on_health_changed)
            started = self.inspector.start(
                self.profile.process_name,
                self.profile.module_name,
                *self.profile.address_specs(),
            )
            if not started:
                raise InspectorUnavailable(
                    f"Could not start inspecting {self.profile.process_name}. "
                    "Make sure the game is running."
                )

            self.decay_timer.start()
            snapshot = self.settings.snapshot()
            self.monitoring = True
            self.current_intensity = 0
            self._command(snapshot.baseline_intensity)
            self.logger.info(f"Monitoring started, baseline intensity {snapshot.baseline_intensity}.")
            return True

    def stop(self):
        """Ends the session and returns the device to baseline. Safe to call repeatedly."""
        # The lifecycle lock stays held through inspector teardown so a
        # concurrent start() only runs once this session is fully gone.
        with self._lifecycle_lock:
            with self._state_lock:
                if not self.monitoring:
                    return
                self.monitoring = False
                self.decay_timer.cancel()
                self._command(self.settings.snapshot().baseline_intensity)
                self.current_intensity = 0

            try:
                self.inspector.stop_inspection()
            except Exception as e:
                self.logger.error(f"Error stopping memory inspection: {e}")
            self._discard_queued_events()
        self.logger.info("Monitoring stopped, intensity restored to baseline.")

    def shutdown(self):
        """Stops the session, the event worker and the decay scheduler."""
        self.stop()
        self._stop_event.set()
        try:
            # Wake the worker so it notices the stop flag
            self._events.put_nowait(None)
        except queue.Full:
            pass
        self._worker_thread.join(timeout=2.0)
        self.decay_timer.shutdown()

    def update_settings(self, changes=None, **fields):
        """
        Applies validated setting changes, given as a dict and/or keywords.
        A decay that is already pending keeps its original deadline; a new
        decay_duration_seconds applies from the next hit.
        """
        changes = dict(changes or {}, **fields)
        snapshot = self.settings.update(changes)
        for field in changes:
            self.logger.info(f"Setting {field} updated to {getattr(snapshot, field)}.")

        if "intensity_cap" in changes:
            with self._state_lock:
                if self.monitoring and self.current_intensity > snapshot.intensity_cap:
                    self.current_intensity = snapshot.intensity_cap
                    self._command(self.current_intensity)

        if "decay_duration_seconds" in changes and self.monitoring:
            self.logger.info(
                f"Punishment duration is now {snapshot.decay_duration_seconds}s; "
                "applies from the next qualifying hit."
            )
        return snapshot

    def on_health_changed(self, player_id, new_health, old_health):
        """
        Inspector callback. Runs on the inspector's thread, so it only hands
        the event over to the worker and returns immediately.
        """
        try:
            self._events.put_nowait(HealthEvent(player_id, new_health, old_health))
        except queue.Full:
            self.logger.warning(f"Event queue full; dropped health change for player {player_id}.")

    def process_event(self, event):
        """
        Decides and commands the intensity for one health change.

        Returns:
            The PunishmentRecord for a qualifying event, otherwise None.
        """
        with self._state_lock:
            if not self.monitoring:
                return None

            config = self.settings.snapshot()

            if not self._is_relevant(event.player_id, config):
                self.logger.debug(f"Ignoring player {event.player_id}: not our seat.")
                return None

            damage = event.damage
            if damage <= self.CHIP_DAMAGE_THRESHOLD:
                self.logger.debug(f"Ignoring player {event.player_id} damage {damage}: chip or heal.")
                return None

            self.decay_timer.cancel()

            candidate = min(self.direct_intensity(damage, config.intensity_multiplier), config.intensity_cap)
            if candidate > self.current_intensity:
                self.current_intensity = candidate
                rule = self.RULE_DIRECT
            else:
                self.current_intensity = min(self.current_intensity + config.combo_increment, config.intensity_cap)
                rule = self.RULE_COMBO

            self._command(self.current_intensity)
            self.decay_timer.arm(config.decay_duration_seconds, self._on_decay_elapsed)

            record = PunishmentRecord(
                timestamp=datetime.now().strftime('%H:%M:%S'),
                player_id=event.player_id,
                damage=damage,
                intensity=self.current_intensity,
                rule=rule,
            )
            self.history.append(record)
            if rule == self.RULE_DIRECT:
                self.logger.info(f"Player {event.player_id} took {damage} damage -> intensity {record.intensity}.")
            else:
                self.logger.info(
                    f"Player {event.player_id} took {damage} damage inside a combo -> "
                    f"escalated to intensity {record.intensity}."
                )
            return record

    @staticmethod
    def direct_intensity(damage, multiplier):
        """damage * multiplier rounded half-up. Both operands are non-negative."""
        return int(math.floor(damage * multiplier + 0.5))

    def _is_relevant(self, player_id, config):
        try:
            seats = self.inspector.get_seat_positions()
        except Exception as e:
            self.logger.error(f"Seat query failed: {e}")
            seats = None

        if config.punish_all_players:
            return True
        if seats is None:
            return False

        own_is_seat1 = seats.own_seat(config.is_local_match) % 2 == 1
        return (player_id == 1 and own_is_seat1) or (player_id == 2 and not own_is_seat1)

    def _on_decay_elapsed(self, token):
        with self._state_lock:
            if not self.decay_timer.consume(token):
                return
            if not self.monitoring:
                return
            baseline = self.settings.snapshot().baseline_intensity
            self._command(baseline)
            self.current_intensity = 0
            self.logger.info(f"Punishment over, back to baseline intensity {baseline}.")

    def _command(self, intensity):
        try:
            self.device.set_intensity(intensity)
        except Exception as e:
            # Keep the optimistic state; the next hit or decay re-sends.
            self.logger.warning(f"Device command {intensity} failed: {e}")

    def _event_worker(self):
        while not self._stop_event.is_set():
            try:
                event = self._events.get(timeout=1.0)
            except queue.Empty:
                continue
            if event is None:
                self._events.task_done()
                continue
            try:
                self.process_event(event)
            except Exception as e:
                self.logger.error(f"Failed to process {event}: {e}")
            finally:
                self._events.task_done()

    def _discard_queued_events(self):
        while True:
            try:
                self._events.get_nowait()
            except queue.Empty:
                return
            self._events.task_done()

    def get_punishment_log(self):
        """Recent punishments, newest first."""
        return [record.to_dict() for record in reversed(self.history)]

    def get_status(self):
        seats = self.inspector.get_seat_positions() if self.monitoring else SeatPositions()
        return {
            "monitoring": self.monitoring,
            "current_intensity": self.current_intensity,
            "decay_pending": self.decay_timer.pending,
            "seats": {"networked": seats.networked_seat, "local": seats.local_seat},
            "health": {
                str(player_id): self.inspector.get_player_health(player_id)
                for player_id in (1, 2)
            } if self.monitoring else {},
            "settings": self.settings.to_dict(),
        }
