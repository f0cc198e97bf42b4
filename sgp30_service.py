import threading
import time
import sgp30_codec as codec
from sgp30_codec import (IAQ_INIT, MEASURE_IAQ, GET_IAQ_BASELINE, SET_IAQ_BASELINE,
                         SET_ABSOLUTE_HUMIDITY, MEASURE_TEST, GET_FEATURE_SET, GET_SERIAL_ID)
from sgp30_errors import TransportError, ProtocolError, HumidityFetchError, StartupError
from humidity_provider import NullHumidityProvider

UNINITIALIZED = "uninitialized"
INITIALIZING  = "initializing"
READY         = "ready"
STATES        = (UNINITIALIZED, INITIALIZING, READY)

TICK_OK       = "OK"
TICK_FAILED   = "FAILED"
TICK_SKIPPED  = "SKIPPED"

# datasheet: ~15 one second reads after iaq_init before values settle
WARMUP_SECS   = 15.0

# log the first failure in a row and then every Nth one
LOG_EVERY     = 60

ERROR_KINDS   = ("transport", "checksum", "humidity")

class SGP30Service (object):
    """Owns the sensor: init sequencing, periodic measurement and
    humidity compensation.

    `tick()` is meant to be called from a single scheduler thread but
    is safe to call from anywhere: a tick that finds the bus busy is
    skipped, never queued. `latest()` never blocks.
    """

    def __init__ (self, transport, humidity=None,
                  warmup_secs=WARMUP_SECS,
                  humidity_max_age=3.0,
                  baseline_interval=3600.0,
                  clock=time.time,
                  sleep=time.sleep):
        self.transport         = transport
        self.humidity          = humidity if humidity is not None else NullHumidityProvider()
        self.warmup_secs       = warmup_secs
        self.humidity_max_age  = humidity_max_age
        self.baseline_interval = baseline_interval
        self.clock             = clock
        self.sleep             = sleep

        self.state             = UNINITIALIZED
        self.init_time         = None
        self.serial            = None
        self.feature_set       = None
        self.last_baseline     = None
        self.baseline_time     = None

        self._bus_lock         = threading.Lock()
        self._stats_lock       = threading.Lock()
        self._reading          = None
        self._humidity_sample  = None
        self._compensated      = False
        self._failures_in_row  = 0
        self._last_error       = None
        self._ticks            = {TICK_OK: 0, TICK_FAILED: 0, TICK_SKIPPED: 0}
        self._errors           = dict((k, 0) for k in ERROR_KINDS)

    #
    #   bus primitives (caller holds _bus_lock)
    #

    def _transact (self, cmd, payload=None):
        if payload is None:
            payload = codec.encode_command(cmd)
        self.transport.write(payload)
        self.sleep(cmd.delay_ms / 1000.0)
        if not cmd.reply_words:
            return None
        return self.transport.read(codec.response_size(cmd))

    def _probe (self):
        try:
            self.serial = codec.decode_serial_response(self._transact(GET_SERIAL_ID))
            print("INFO: [sgp30] serial number", codec.serial_hex(self.serial))
        except ProtocolError as err:
            print("WARNING: [sgp30] unable to read serial number:", err)
        try:
            self.feature_set = codec.decode_feature_set_response(self._transact(GET_FEATURE_SET))
            print("INFO: [sgp30] feature set: type {} version 0x{:02X}".format(*self.feature_set))
        except ProtocolError as err:
            print("WARNING: [sgp30] unable to read feature set:", err)

    def _self_test (self):
        try:
            codec.decode_selftest_response(self._transact(MEASURE_TEST))
        except ProtocolError as err:
            raise StartupError("sensor self test failed: {}".format(err)) from err
        print("INFO: [sgp30] self test passed")

    #
    #   lifecycle
    #

    def start (self, self_test=False, baseline=None):
        """Probe, init the IAQ algorithm and optionally restore a saved
        baseline. Transport errors are not caught: a sensor that can not
        be talked to at startup is fatal.
        """
        with self._bus_lock:
            self._probe()
            if self_test:
                # only meaningful before iaq_init
                self._self_test()
            self._transact(IAQ_INIT)
            self.state     = INITIALIZING
            self.init_time = self.clock()
            print("INFO: [sgp30] iaq_init sent, warming up for {:.0f}s".format(self.warmup_secs))
            if baseline is not None:
                (eco2, tvoc) = baseline
                self._transact(SET_IAQ_BASELINE, codec.encode_set_baseline(eco2, tvoc))
                print("INFO: [sgp30] restored baseline eCO2=0x{:04X} TVOC=0x{:04X}".format(eco2, tvoc))

    def warming_up (self):
        if self.init_time is None:
            return False
        return (self.clock() - self.init_time) < self.warmup_secs

    #
    #   measurement
    #

    def latest (self):
        return self._reading

    def tick (self):
        if not self._bus_lock.acquire(blocking=False):
            with self._stats_lock:
                self._ticks[TICK_SKIPPED] += 1
            return TICK_SKIPPED
        try:
            return self._measure()
        finally:
            self._bus_lock.release()

    def _current_humidity (self, now):
        try:
            sample = self.humidity.fetch()
        except HumidityFetchError as err:
            self._count_error("humidity", err, log=self._errors["humidity"] % LOG_EVERY == 0)
        else:
            self._humidity_sample = sample
        s = self._humidity_sample
        if s is not None and (now - s.fetched_at) > self.humidity_max_age:
            self._humidity_sample = None
        return self._humidity_sample

    def _measure (self):
        sample = self._current_humidity(self.clock())
        try:
            compensated = False
            if sample is not None:
                self._transact(SET_ABSOLUTE_HUMIDITY,
                               codec.encode_command(SET_ABSOLUTE_HUMIDITY, [sample.absolute_humidity]))
                compensated = True
            raw = self._transact(MEASURE_IAQ)
            reading = codec.decode_measure_response(raw, observed_at=self.clock())
        except TransportError as err:
            return self._tick_failed("transport", err)
        except ProtocolError as err:
            return self._tick_failed("checksum", err)

        # single reference swap: readers see the old or the new reading
        self._reading = reading
        if self.state == INITIALIZING and not self.warming_up():
            self.state = READY
            print("INFO: [sgp30] warm up finished, readings are calibrated")

        with self._stats_lock:
            if self._failures_in_row:
                print("INFO: [sgp30] recovered after {} failed ticks".format(self._failures_in_row))
            self._failures_in_row = 0
            self._compensated     = compensated
            self._ticks[TICK_OK] += 1

        self._maybe_read_baseline(reading.observed_at)
        return TICK_OK

    def _tick_failed (self, kind, err):
        with self._stats_lock:
            self._failures_in_row += 1
            self._ticks[TICK_FAILED] += 1
            n = self._failures_in_row
        self._count_error(kind, err, log=(n == 1 or n % LOG_EVERY == 0))
        return TICK_FAILED

    def _count_error (self, kind, err, log=True):
        with self._stats_lock:
            self._errors[kind] += 1
            self._last_error = "{}: {}".format(kind, err)
        if log:
            print("WARNING: [sgp30] {} error: {}".format(kind, err))

    #
    #   baseline
    #

    def _maybe_read_baseline (self, now):
        if self.state != READY:
            return
        if self.baseline_time is not None and (now - self.baseline_time) < self.baseline_interval:
            return
        self.baseline_time = now
        try:
            self.last_baseline = codec.decode_baseline_response(self._transact(GET_IAQ_BASELINE))
        except TransportError as err:
            self._count_error("transport", err)
        except ProtocolError as err:
            self._count_error("checksum", err)

    def baseline (self):
        with self._bus_lock:
            self.last_baseline = codec.decode_baseline_response(self._transact(GET_IAQ_BASELINE))
            self.baseline_time = self.clock()
            return self.last_baseline

    def restore_baseline (self, eco2, tvoc):
        with self._bus_lock:
            self._transact(SET_IAQ_BASELINE, codec.encode_set_baseline(eco2, tvoc))

    #
    #   observability
    #

    def stats (self):
        with self._stats_lock:
            return {
                "state" : self.state,
                "warming_up" : self.warming_up(),
                "ticks" : dict(self._ticks),
                "errors" : dict(self._errors),
                "last_error" : self._last_error,
                "failures_in_row" : self._failures_in_row,
                "compensated" : self._compensated,
                "serial" : self.serial,
                "feature_set" : self.feature_set,
                "baseline" : self.last_baseline,
            }
