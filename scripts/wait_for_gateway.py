"""Block until the scheduling gateway answers, e.g. before running integration tests in CI."""

import os
import sys
import time

import requests

GATEWAY_URL = os.environ.get("FLASHDECK_GATEWAY_URL", "http://127.0.0.1:4321").rstrip("/")
MAX_RETRIES = 30
DELAY = 1


def check_gateway():
    try:
        response = requests.get(f"{GATEWAY_URL}/api/reviews/queue", timeout=1)
        # 401 still means the service is up
        if response.status_code < 500:
            print(f"Gateway is ready! HTTP {response.status_code}")
            return True
    except requests.exceptions.RequestException:
        pass
    return False


def main():
    print(f"Waiting for gateway at {GATEWAY_URL}...")
    for i in range(MAX_RETRIES):
        if check_gateway():
            sys.exit(0)
        time.sleep(DELAY)
        print(f"Retry {i + 1}/{MAX_RETRIES}...")

    print("Timed out waiting for the gateway.")
    sys.exit(1)


if __name__ == "__main__":
    main()
