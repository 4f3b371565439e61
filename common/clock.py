import time
from datetime import datetime, timezone


class Clock:
    def now(self):
        return datetime.now(timezone.utc)

    def monotonic(self):
        return time.monotonic()


clock = Clock()
