import math
import struct
from collections import namedtuple
from sgp30_errors import ChecksumError, ShortResponseError, SelfTestError

#
#   SGP30 wire format. Every 16 bit word travels big-endian and is
#   followed by a CRC-8 (poly 0x31, init 0xFF) computed over its two
#   bytes. Command opcodes are sent without a CRC.
#

SGP30_I2C_ADDRESS = 0x58
CRC8_POLYNOMIAL   = 0x31
CRC8_INIT         = 0xFF
WORD_SIZE         = 3            # 2 data bytes + crc
SELFTEST_OK       = 0xD400
HUMIDITY_MAX      = 0xFFFF / 256.0

Command  = namedtuple("Command", ["name", "opcode", "data_words", "reply_words", "delay_ms"])
Reading  = namedtuple("Reading", ["tvoc_ppb", "eco2_ppm", "observed_at"])
Baseline = namedtuple("Baseline", ["eco2", "tvoc"])
FeatureSet = namedtuple("FeatureSet", ["product_type", "product_version"])

IAQ_INIT              = Command("iaq_init",              0x2003, 0, 0, 10)
MEASURE_IAQ           = Command("measure_iaq",           0x2008, 0, 2, 12)
GET_IAQ_BASELINE      = Command("get_iaq_baseline",      0x2015, 0, 2, 10)
SET_IAQ_BASELINE      = Command("set_iaq_baseline",      0x201E, 2, 0, 10)
SET_ABSOLUTE_HUMIDITY = Command("set_absolute_humidity", 0x2061, 1, 0, 10)
MEASURE_TEST          = Command("measure_test",          0x2032, 0, 1, 220)
GET_FEATURE_SET       = Command("get_feature_set",       0x202F, 0, 1, 10)
GET_SERIAL_ID         = Command("get_serial_id",         0x3682, 0, 3, 1)

def crc8 (data):
    crc = CRC8_INIT
    for byte in data:
        crc ^= byte
        for _ in range(8):
            if crc & 0x80:
                crc = ((crc << 1) ^ CRC8_POLYNOMIAL) & 0xFF
            else:
                crc = (crc << 1) & 0xFF
    return crc

def pack_word (value):
    if not 0 <= value <= 0xFFFF:
        raise ValueError("word out of range: {}".format(value))
    b = struct.pack(">H", value)
    return b + bytes([crc8(b)])

def encode_command (cmd, words=()):
    """Opcode followed by each data word and its crc. Pure: no bus access.
    """
    words = tuple(words)
    if len(words) != cmd.data_words:
        raise ValueError("{} takes {} data words, got {}".format(cmd.name, cmd.data_words, len(words)))
    out = struct.pack(">H", cmd.opcode)
    for w in words:
        out += pack_word(w)
    return out

def response_size (cmd):
    return cmd.reply_words * WORD_SIZE

def decode_words (data, count):
    """Split a response into `count` words. The whole response is
    rejected if any single crc is wrong.
    """
    need = count * WORD_SIZE
    if len(data) < need:
        raise ShortResponseError(need, len(data))
    words = []
    for i in range(count):
        chunk = bytes(data[i * WORD_SIZE : i * WORD_SIZE + 2])
        crc   = data[i * WORD_SIZE + 2]
        expected = crc8(chunk)
        if crc != expected:
            raise ChecksumError(i, expected, crc)
        words.append(struct.unpack(">H", chunk)[0])
    return tuple(words)

def decode_measure_response (data, observed_at=None):
    # datasheet order: CO2eq word first, TVOC second
    (eco2, tvoc) = decode_words(data, MEASURE_IAQ.reply_words)
    return Reading(tvoc_ppb=tvoc, eco2_ppm=eco2, observed_at=observed_at)

def decode_baseline_response (data):
    (eco2, tvoc) = decode_words(data, GET_IAQ_BASELINE.reply_words)
    return Baseline(eco2=eco2, tvoc=tvoc)

def decode_feature_set_response (data):
    (word,) = decode_words(data, GET_FEATURE_SET.reply_words)
    return FeatureSet(product_type=(word >> 12) & 0x0F, product_version=word & 0xFF)

def decode_serial_response (data):
    words = decode_words(data, GET_SERIAL_ID.reply_words)
    return b"".join(struct.pack(">H", w) for w in words)

def decode_selftest_response (data):
    (word,) = decode_words(data, MEASURE_TEST.reply_words)
    if word != SELFTEST_OK:
        raise SelfTestError("self test returned 0x{:04X}".format(word))
    return word

def humidity_to_fixed_point (g_per_m3):
    """8.8 fixed point, clamped to what the sensor can represent
    (0 .. 255.996 g/m3). Zero switches compensation off on the sensor.
    """
    if g_per_m3 is None or math.isnan(g_per_m3):
        return 0
    v = min(max(float(g_per_m3), 0.0), HUMIDITY_MAX)
    return min(int(round(v * 256.0)), 0xFFFF)

def encode_humidity_compensation (g_per_m3):
    return encode_command(SET_ABSOLUTE_HUMIDITY, [humidity_to_fixed_point(g_per_m3)])

def encode_set_baseline (eco2, tvoc):
    # the write takes TVOC first, the reverse of get_iaq_baseline
    return encode_command(SET_IAQ_BASELINE, [tvoc, eco2])

def serial_hex (serial):
    return "".join("{:02X}".format(b) for b in serial) if serial else ""
