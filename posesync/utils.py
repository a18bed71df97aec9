"""
Utility functions for ID generation and timestamps
"""
import random
import string
import time


def generate_connection_id(length: int = 9) -> str:
    """Generate a random connection ID (used for logging only)"""
    alphabet = string.ascii_lowercase + string.digits
    return "conn_" + "".join(random.choice(alphabet) for _ in range(length))


def now_ms() -> int:
    """Wall clock in milliseconds since the epoch, as browsers send it"""
    return int(time.time() * 1000)
