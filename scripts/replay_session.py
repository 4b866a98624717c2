import sys
import os
import time
import argparse
import logging

# Ensure punisher modules are in path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from punisher.services.device_driver import DeviceDriver
from punisher.services.punishment_controller import PunishmentController
from punisher.services.replay_inspector import ReplayInspector
from punisher.services.settings import PunishmentSettings

DEFAULT_REPLAY = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "samples", "combo_session.json")


def run_replay(replay_path, speed):
    print(f"=== Replaying {replay_path} at {speed}x ===")

    settings = PunishmentSettings.from_env()
    inspector = ReplayInspector(replay_path, speed=speed)
    device = DeviceDriver()
    controller = PunishmentController(inspector, device, settings=settings)

    controller.start()
    inspector.finished.wait()

    # Let the last punishment decay before reporting
    time.sleep(settings.snapshot().decay_duration_seconds / max(speed, 0.01) + 0.5)

    print("\n--- Punishment Log ---")
    for record in reversed(controller.get_punishment_log()):
        print(f"  [{record['timestamp']}] P{record['player_id']} dmg={record['damage']:>4} "
              f"-> {record['intensity']:>3} ({record['rule']})")

    controller.shutdown()
    device.stop()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Drive the punishment controller from a recorded match.")
    parser.add_argument("replay", nargs="?", default=DEFAULT_REPLAY)
    parser.add_argument("--speed", type=float, default=1.0)
    args = parser.parse_args()

    logging.basicConfig(level=os.getenv("PUNISHER_LOG_LEVEL", "INFO").upper())
    run_replay(args.replay, args.speed)
