import pytest

from punisher.services.memory_inspector import SeatPositions
from punisher.services.punishment_controller import PunishmentController
from punisher.services.settings import PunishmentSettings


class FakeInspector:
    """Stands in for the memory inspector; tests push seats/health directly."""

    def __init__(self, seats=SeatPositions(1, 1), start_ok=True):
        self.seats = seats
        self.start_ok = start_ok
        self.callback = None
        self.start_calls = []
        self.stop_calls = 0
        self.seat_queries = 0

    def subscribe(self, callback):
        self.callback = callback

    def start(self, process_name, module_name, *address_specs):
        self.start_calls.append((process_name, module_name, address_specs))
        return self.start_ok

    def stop_inspection(self):
        self.stop_calls += 1

    def get_seat_positions(self):
        self.seat_queries += 1
        return self.seats

    def get_player_health(self, player_id):
        return 0


class FakeDevice:
    def __init__(self):
        self.commands = []

    def set_intensity(self, value):
        self.commands.append(value)

    @property
    def last(self):
        return self.commands[-1] if self.commands else None


class FakeDecayTimer:
    """Records arms/cancels; fire() plays the scheduler's role."""

    def __init__(self):
        self.arms = []
        self.cancels = 0
        self.started = False
        self._token = 0
        self._armed = None
        self._callback = None

    def start(self):
        self.started = True

    def arm(self, duration_seconds, callback):
        self._token += 1
        self._armed = self._token
        self._callback = callback
        self.arms.append(duration_seconds)
        return self._token

    def cancel(self):
        self.cancels += 1
        self._armed = None

    def consume(self, token):
        if token is None or token != self._armed:
            return False
        self._armed = None
        return True

    @property
    def pending(self):
        return self._armed is not None

    def fire(self, token=None):
        self._callback(self._token if token is None else token)

    def shutdown(self):
        self._armed = None


@pytest.fixture
def inspector():
    return FakeInspector()


@pytest.fixture
def device():
    return FakeDevice()


@pytest.fixture
def timer():
    return FakeDecayTimer()


@pytest.fixture
def settings():
    # baseline 20, x1.0, cap 200, combo +5, 2s decay
    return PunishmentSettings(
        baseline_intensity=20,
        intensity_multiplier=1.0,
        intensity_cap=200,
        combo_increment=5,
        decay_duration_seconds=2.0,
    )


@pytest.fixture
def controller(inspector, device, settings, timer):
    ctrl = PunishmentController(inspector, device, settings=settings, decay_timer=timer)
    yield ctrl
    ctrl.shutdown()


@pytest.fixture
def running(controller):
    controller.start()
    return controller
