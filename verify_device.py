import sys
import os
import time
sys.path.append(os.getcwd())

from dotenv import load_dotenv

from punisher.services.device_driver import DeviceDriver
from punisher.services.exceptions import DeviceCommandFailure


def verify_device(test_intensity=10, hold_seconds=1.0):
    load_dotenv()
    driver = DeviceDriver()
    if not driver.endpoint_url:
        print("DEVICE_ENDPOINT_URL is not set; nothing to verify.")
        return False

    print(f"Sending intensity {test_intensity} to {driver.endpoint_url}...")
    try:
        driver.send(test_intensity)
        time.sleep(hold_seconds)
        driver.send(0)
    except DeviceCommandFailure as e:
        print(f"FAILED: {e}")
        return False
    finally:
        driver.stop()

    print("Device accepted both commands.")
    return True


if __name__ == "__main__":
    sys.exit(0 if verify_device() else 1)
