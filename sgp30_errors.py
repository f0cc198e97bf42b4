class Sgp30Error (Exception):
    "Base of everything the exporter raises on purpose"

class TransportError (Sgp30Error):
    "I2C read or write failed (bus missing, NACK, ...)"

class ProtocolError (Sgp30Error):
    "Sensor answered with bytes that can not be trusted"

class ChecksumError (ProtocolError):
    def __init__ (self, word_index, expected, received):
        self.word_index = word_index
        self.expected   = expected
        self.received   = received
        super().__init__("CRC mismatch on word {}: expected 0x{:02X} got 0x{:02X}".format(
            word_index, expected, received))

class ShortResponseError (ProtocolError):
    def __init__ (self, expected, received):
        self.expected = expected
        self.received = received
        super().__init__("short response: expected {} bytes got {}".format(expected, received))

class SelfTestError (ProtocolError):
    "measure_test did not return 0xD400"

class HumidityFetchError (Sgp30Error):
    "Humidity source unreachable, slow or unparsable"

class StartupError (Sgp30Error):
    "Fatal: the process can not start"

class ConfigError (StartupError):
    def __init__ (self, name, value, reason):
        self.name  = name
        self.value = value
        super().__init__("bad value for {}: {!r} ({})".format(name, value, reason))
