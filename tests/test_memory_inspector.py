import threading
import time

import pytest

from punisher.services.exceptions import MemoryReadError
from punisher.services.memory_inspector import GGST_PROFILE, MemoryInspector, SeatPositions


class ScriptedReader:
    """Returns queued health values per player, then repeats the last one."""

    def __init__(self, health_script, seats=SeatPositions(1, 2)):
        self.health_script = {pid: list(values) for pid, values in health_script.items()}
        self.last = {}
        self.seats = seats
        self.closed = False

    def read_health(self, player_id):
        script = self.health_script.get(player_id, [])
        if script:
            value = script.pop(0)
            if isinstance(value, Exception):
                raise value
            self.last[player_id] = value
        if player_id not in self.last:
            raise MemoryReadError("not in a match")
        return self.last[player_id]

    def read_seats(self):
        return self.seats

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def fast_polling(monkeypatch):
    monkeypatch.setattr(MemoryInspector, "HEALTH_POLL_INTERVAL", 0.005)
    monkeypatch.setattr(MemoryInspector, "SEAT_POLL_INTERVAL", 0.005)
    monkeypatch.setattr(MemoryInspector, "RETRY_DELAY", 0.01)


def collect_events(inspector, expected):
    events = []
    done = threading.Event()

    def callback(player_id, new_health, old_health):
        events.append((player_id, new_health, old_health))
        if len(events) >= expected:
            done.set()

    inspector.subscribe(callback)
    return events, done


class TestMemoryInspector:

    def test_start_without_reader_fails(self):
        inspector = MemoryInspector()
        assert inspector.start("game.exe", "game.exe") is False

    def test_attach_error_reports_failure(self):
        def attach(process_name, module_name, specs):
            raise OSError("process not found")

        inspector = MemoryInspector(attach=attach)
        assert inspector.start(GGST_PROFILE.process_name, GGST_PROFILE.module_name) is False

    def test_attach_receives_address_specs(self):
        received = {}

        def attach(process_name, module_name, specs):
            received.update(process=process_name, module=module_name, specs=specs)
            return ScriptedReader({1: [420], 2: [420]})

        inspector = MemoryInspector(attach=attach)
        try:
            assert inspector.start(GGST_PROFILE.process_name, GGST_PROFILE.module_name, *GGST_PROFILE.address_specs())
        finally:
            inspector.stop_inspection()

        assert received["process"] == "GGST-Win64-Shipping.exe"
        assert received["specs"][0].base_offset == 0x051B4158
        assert received["specs"][1].offsets == (0x1C0, 0x1A0, 0x1220)

    def test_emits_changes_after_priming_read(self):
        reader = ScriptedReader({1: [420, 420, 390, 380], 2: [420]})
        inspector = MemoryInspector(attach=lambda *args: reader)
        events, done = collect_events(inspector, expected=2)

        inspector.start("game.exe", "game.exe")
        try:
            assert done.wait(2.0)
        finally:
            inspector.stop_inspection()

        assert events == [(1, 390, 420), (1, 380, 390)]
        assert reader.closed

    def test_read_error_resets_baseline(self):
        # 420 primes, error drops the baseline, 300 re-primes, 250 is a real change
        reader = ScriptedReader({1: [420, MemoryReadError("loading"), 300, 250], 2: [420]})
        inspector = MemoryInspector(attach=lambda *args: reader)
        events, done = collect_events(inspector, expected=1)

        inspector.start("game.exe", "game.exe")
        try:
            assert done.wait(2.0)
            time.sleep(0.05)
        finally:
            inspector.stop_inspection()

        assert events == [(1, 250, 300)]

    def test_unexpected_reader_error_does_not_kill_poller(self):
        reader = ScriptedReader({1: [420, OSError("process exited"), 300, 250], 2: [420]})
        inspector = MemoryInspector(attach=lambda *args: reader)
        events, done = collect_events(inspector, expected=1)

        inspector.start("game.exe", "game.exe")
        try:
            assert done.wait(2.0)
        finally:
            inspector.stop_inspection()

        assert events == [(1, 250, 300)]

    def test_seat_positions_and_health_queries(self):
        reader = ScriptedReader({1: [400], 2: [350]}, seats=SeatPositions(2, 1))
        inspector = MemoryInspector(attach=lambda *args: reader)
        inspector.start("game.exe", "game.exe")
        try:
            deadline = time.time() + 2.0
            while time.time() < deadline and inspector.get_player_health(2) != 350:
                time.sleep(0.01)
            assert inspector.get_seat_positions() == SeatPositions(2, 1)
            assert inspector.get_player_health(1) == 400
            assert inspector.get_player_health(2) == 350
        finally:
            inspector.stop_inspection()

        assert inspector.get_seat_positions() == SeatPositions()
        assert inspector.get_player_health(1) == 0

    def test_callback_errors_do_not_kill_poller(self):
        reader = ScriptedReader({1: [420, 400, 380], 2: [420]})
        inspector = MemoryInspector(attach=lambda *args: reader)
        seen = []
        done = threading.Event()

        def flaky(player_id, new_health, old_health):
            seen.append(new_health)
            if len(seen) == 1:
                raise RuntimeError("boom")
            done.set()

        inspector.subscribe(flaky)
        inspector.start("game.exe", "game.exe")
        try:
            assert done.wait(2.0)
        finally:
            inspector.stop_inspection()
        assert seen == [400, 380]


class TestSeatPositions:

    def test_own_seat(self):
        seats = SeatPositions(networked_seat=1, local_seat=2)
        assert seats.own_seat(is_local_match=False) == 1
        assert seats.own_seat(is_local_match=True) == 2
