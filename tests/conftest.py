import struct
import threading
import pytest
import sgp30_codec
from sgp30_errors import TransportError

def words_to_bytes (words):
    return b"".join(sgp30_codec.pack_word(w) for w in words)

class FakeSgp30 (object):
    """In-memory SGP30 speaking the real wire format. Records every
    write; can be told to NACK or corrupt upcoming responses.
    """

    def __init__ (self, eco2=400, tvoc=0):
        self.eco2          = eco2
        self.tvoc          = tvoc
        self.serial        = (0x0000, 0x0123, 0x4567)
        self.feature_set   = 0x0022
        self.baseline      = (0x8973, 0x8AAE)
        self.selftest      = sgp30_codec.SELFTEST_OK
        self.humidity      = None
        self.writes        = []
        self.pending       = b""
        self.fail_writes   = 0
        self.corrupt_reads = 0
        self.gate          = None
        self.in_flight     = 0
        self.max_in_flight = 0
        self.closed        = False
        self._lock         = threading.Lock()

    def opcodes (self):
        return [struct.unpack(">H", w[:2])[0] for w in self.writes]

    def write (self, data):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                self.gate.wait(5)
            if self.fail_writes:
                self.fail_writes -= 1
                raise TransportError("i2c write failed: NACK")
            self.writes.append(bytes(data))
            self._respond(bytes(data))
        finally:
            with self._lock:
                self.in_flight -= 1

    def _respond (self, data):
        opcode = struct.unpack(">H", data[:2])[0]
        args = sgp30_codec.decode_words(data[2:], (len(data) - 2) // 3)
        self.pending = b""
        if opcode == sgp30_codec.MEASURE_IAQ.opcode:
            self.pending = words_to_bytes([self.eco2, self.tvoc])
        elif opcode == sgp30_codec.GET_SERIAL_ID.opcode:
            self.pending = words_to_bytes(self.serial)
        elif opcode == sgp30_codec.GET_FEATURE_SET.opcode:
            self.pending = words_to_bytes([self.feature_set])
        elif opcode == sgp30_codec.GET_IAQ_BASELINE.opcode:
            self.pending = words_to_bytes(self.baseline)
        elif opcode == sgp30_codec.SET_IAQ_BASELINE.opcode:
            (tvoc, eco2) = args
            self.baseline = (eco2, tvoc)
        elif opcode == sgp30_codec.SET_ABSOLUTE_HUMIDITY.opcode:
            self.humidity = args[0]
        elif opcode == sgp30_codec.MEASURE_TEST.opcode:
            self.pending = words_to_bytes([self.selftest])

    def read (self, count):
        data = bytearray(self.pending[:count])
        if self.corrupt_reads and data:
            self.corrupt_reads -= 1
            data[2] ^= 0x01
        return bytes(data)

    def close (self):
        self.closed = True

class FakeClock (object):
    def __init__ (self, t=1000.0):
        self.t = t

    def __call__ (self):
        return self.t

    def advance (self, secs):
        self.t += secs

@pytest.fixture
def sensor ():
    return FakeSgp30()

@pytest.fixture
def clock ():
    return FakeClock()
