import secrets
import time


def new_id():
    """Returns a time-prefixed id with 64 random bits, e.g. '66f1c2a40b3e1' + 16 hex chars."""
    now = time.time()
    seconds = int(now)
    micros = int((now - seconds) * 1000000)
    return f"{seconds:08x}{micros:05x}{secrets.token_hex(8)}"


def new_token():
    """Capability secret for share links, independent of any id."""
    return secrets.token_hex(16)
