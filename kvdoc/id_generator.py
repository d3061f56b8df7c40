"""
Short, roughly time-ordered document identifiers.

An id is ``<kind>-<base65 digits>`` where the digits encode the decimal
numeral formed by a microsecond timestamp (offset from 2016-01-01) followed
by a 4-digit random tail. Within one process the timestamp component never
repeats; across processes the random tail keeps clashes improbable, and the
store's create-if-absent add() rejects the rest.
"""

import random
import threading
import time

# 62 alphanumerics plus URL-safe punctuation: no escaping needed in a URL
BASE65_ALPHABET = (
    "0123456789"
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "-_~"
)

# Seconds from the Unix epoch to 2016-01-01T12:00:00Z; earlier ids are never needed
EPOCH_OFFSET = 1451649600

ID_SEPARATOR = "-"


def encode_base65(number: int) -> str:
    """Encode a non-negative integer with BASE65_ALPHABET, most significant digit first."""
    if number < 0:
        raise ValueError(f"Cannot encode negative number: {number}")
    if number == 0:
        return BASE65_ALPHABET[0]
    digits = []
    while number:
        number, rem = divmod(number, 65)
        digits.append(BASE65_ALPHABET[rem])
    return "".join(reversed(digits))


def decode_base65(text: str) -> int:
    number = 0
    for char in text:
        index = BASE65_ALPHABET.find(char)
        if index < 0:
            raise ValueError(f"Invalid base65 digit {char!r} in {text!r}")
        number = number * 65 + index
    return number


class MonotonicMicros:
    """
    Microseconds since EPOCH_OFFSET, strictly increasing per instance.

    When the wall clock has not advanced (or went backwards) since the last
    reading, the previous value plus one is returned instead.
    """

    def __init__(self, clock=time.time_ns):
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def __call__(self) -> int:
        now = self._clock() // 1000 - EPOCH_OFFSET * 1_000_000
        with self._lock:
            if now <= self._last:
                now = self._last + 1
            self._last = now
            return now


# Shared by every generator in the process
_process_clock = MonotonicMicros()


class IdGenerator:
    """
    Generates ids for new documents.

    Instances are cheap and independent; they share only the process clock.
    ``rng`` may be supplied for deterministic tests.
    """

    def __init__(self, clock=None, rng=None):
        self._clock = clock or _process_clock
        self._rng = rng or random.SystemRandom()

    def next(self, kind: str) -> str:
        """Return a fresh id for a document of ``kind``."""
        stamp = self._clock()
        tail = self._rng.randint(1, 9999)
        numeral = int(f"{stamp}{tail:04d}")
        return f"{kind}{ID_SEPARATOR}{encode_base65(numeral)}"

    __call__ = next


default_generator = IdGenerator()
