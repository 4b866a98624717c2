import json
import threading

from punisher.services.memory_inspector import MemoryInspector, SeatPositions


class ReplayInspector(MemoryInspector):
    """
    Simulates a live match by replaying a recorded list of health changes.
    Useful for demos and for exercising a device without the game running.

    Replay file format:
        {
          "seats": {"networked": 1, "local": 1},
          "events": [
            {"player_id": 1, "old_health": 420, "new_health": 380, "delay": 0.5},
            ...
          ]
        }
    `delay` is the pause in seconds before the event is emitted.
    """

    def __init__(self, replay_path, speed=1.0):
        super().__init__(attach=None)
        self.replay_path = replay_path
        self.speed = speed
        self.finished = threading.Event()
        self._events = []

    def load(self):
        """Reads and validates the replay file. Raises ValueError/OSError on bad input."""
        with open(self.replay_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError("Replay file must contain a JSON object")
        seats = data.get("seats", {})
        if not isinstance(seats, dict):
            raise ValueError("\"seats\" must be an object")
        raw_events = data.get("events", [])
        if not isinstance(raw_events, list):
            raise ValueError("\"events\" must be a list")

        events = []
        for raw in raw_events:
            if not isinstance(raw, dict):
                raise ValueError(f"Replay event {raw!r} is not an object")
            player_id = int(raw["player_id"])
            if player_id not in self.PLAYER_IDS:
                raise ValueError(f"Unknown player_id {player_id} in replay")
            events.append({
                "player_id": player_id,
                "old_health": int(raw["old_health"]),
                "new_health": int(raw["new_health"]),
                "delay": max(0.0, float(raw.get("delay", 0.0))),
            })

        self._events = events
        return SeatPositions(
            networked_seat=int(seats.get("networked", 0)),
            local_seat=int(seats.get("local", 0)),
        )

    def start(self, process_name, module_name, *address_specs) -> bool:
        if self.is_running:
            return True
        try:
            seats = self.load()
        except (OSError, ValueError, KeyError, TypeError) as e:
            self.logger.warning(f"Cannot replay {self.replay_path}: {e}")
            return False

        with self._lock:
            self._seats = seats
        self._stop_event.clear()
        self.finished.clear()
        self._threads = [threading.Thread(target=self._replay_loop, daemon=True)]
        self._threads[0].start()
        self.logger.info(f"Replaying {len(self._events)} events from {self.replay_path} (standing in for {process_name}).")
        return True

    def _replay_loop(self):
        for event in self._events:
            if self._stop_event.wait(event["delay"] / self.speed if self.speed > 0 else 0):
                break
            with self._lock:
                self._health[event["player_id"]] = event["new_health"]
            self._emit(event["player_id"], event["new_health"], event["old_health"])
        self.finished.set()
