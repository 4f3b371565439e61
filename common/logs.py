import json
import uuid
from datetime import datetime, timezone

WORKER_ID = f"mapping-sheet-scanner-{uuid.uuid4()}"

_verbose = False


def configure(verbose: bool) -> None:
    global _verbose
    _verbose = verbose


def is_verbose() -> bool:
    return _verbose


def log_event(event, level="info", **fields):
    payload = {
        "event": event,
        "worker_id": WORKER_ID,
        "ts": datetime.now(timezone.utc).isoformat(),
        "level": level,
        **fields,
    }
    print(json.dumps(payload, default=str), flush=True)


def log_debug(event, **fields):
    if _verbose:
        log_event(event, level="debug", **fields)
