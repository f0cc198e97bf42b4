import math
import socket
import threading
import time
import cherrypy
from cherrypy.process import plugins
from prometheus_client import CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.core import (GaugeMetricFamily, CounterMetricFamily,
                                    InfoMetricFamily, StateSetMetricFamily)
import sgp30_codec
import sgp30_service
from sgp30_errors import StartupError

class SGP30Collector (object):
    """Turns the service's shared state into metric families on every
    scrape. Reading gauges are left out until a first reading exists.
    """

    def __init__ (self, service):
        self.service = service

    def collect (self):
        reading = self.service.latest()
        stats   = self.service.stats()

        if reading is not None:
            yield GaugeMetricFamily('sgp30_tvoc_ppb',
                                    'Total volatile organic compounds in parts per billion',
                                    value=reading.tvoc_ppb)
            yield GaugeMetricFamily('sgp30_eco2_ppm',
                                    'Equivalent carbon dioxide in parts per million',
                                    value=reading.eco2_ppm)
            yield GaugeMetricFamily('sgp30_last_update_timestamp_seconds',
                                    'Unix time of the last successful measurement',
                                    value=reading.observed_at)

        yield GaugeMetricFamily('sgp30_up',
                                '1 once the sensor produced a valid reading',
                                value=1 if reading is not None else 0)

        yield StateSetMetricFamily('sgp30_calibration_state',
                                   'IAQ algorithm calibration state',
                                   value=dict((s, s == stats["state"]) for s in sgp30_service.STATES))

        yield GaugeMetricFamily('sgp30_humidity_compensation',
                                '1 if absolute humidity was sent before the last measurement',
                                value=1 if stats["compensated"] else 0)

        ticks = CounterMetricFamily('sgp30_ticks', 'Measurement ticks by outcome', labels=['result'])
        for (result, n) in sorted(stats["ticks"].items()):
            ticks.add_metric([result.lower()], n)
        yield ticks

        errors = CounterMetricFamily('sgp30_errors', 'Per tick errors by kind', labels=['kind'])
        for (kind, n) in sorted(stats["errors"].items()):
            errors.add_metric([kind], n)
        yield errors

        info = {"serial" : sgp30_codec.serial_hex(stats["serial"])}
        fs = stats["feature_set"]
        if fs is not None:
            info["product_type"]    = str(fs.product_type)
            info["product_version"] = "0x{:02X}".format(fs.product_version)
        yield InfoMetricFamily('sgp30', 'Sensor identification', value=info)

        baseline = stats["baseline"]
        if baseline is not None:
            yield GaugeMetricFamily('sgp30_baseline_eco2', 'IAQ baseline word for eCO2', value=baseline.eco2)
            yield GaugeMetricFamily('sgp30_baseline_tvoc', 'IAQ baseline word for TVOC', value=baseline.tvoc)

def make_registry (service):
    registry = CollectorRegistry(auto_describe=False)
    registry.register(SGP30Collector(service))
    return registry

class MetricsServer (object):
    "SGP30 Prometheus scrape endpoint"

    def __init__ (self, service):
        self.service  = service
        self.registry = make_registry(service)

    @cherrypy.expose
    def index (self):
        cherrypy.response.headers['Content-Type'] = 'text/plain'
        return "SGP30 exporter. Metrics are at /metrics\n"

    @cherrypy.expose
    def metrics (self):
        cherrypy.response.headers['Content-Type'] = CONTENT_TYPE_LATEST
        return generate_latest(self.registry)

def next_slot (start, period, now, last):
    """Index of the next deadline (start + slot * period) at or after `now`.
    Deadlines that passed while the previous tick ran are skipped and
    returned as `missed`; they are never run late.
    """
    slot   = max(last + 1, int(math.ceil((now - start) / period)))
    missed = slot - last - 1
    return (slot, missed)

class MeasurementScheduler (plugins.SimplePlugin):
    """Engine plugin calling `function` every `period` seconds from one
    thread. Ticks never overlap.
    """

    def __init__ (self, bus, function, period, clock=time.monotonic):
        plugins.SimplePlugin.__init__(self, bus)
        self.function = function
        self.period   = period
        self.clock    = clock
        self.thread   = None
        self.missed   = 0
        self._halt    = threading.Event()

    def start (self):
        if self.thread is None:
            self._halt.clear()
            self.thread = threading.Thread(target=self.run, name="sgp30 measurement")
            self.thread.daemon = True
            self.thread.start()
            self.bus.log("Started measurement scheduler, period {}s".format(self.period))
    start.priority = 70

    def stop (self):
        if self.thread is None:
            return
        self._halt.set()
        if self.thread is not threading.current_thread():
            # a tick is short and bounded, don't wait around for it
            self.thread.join(0.5)
        self.thread = None
        self.bus.log("Stopped measurement scheduler")

    def run (self):
        start = self.clock()
        slot  = 0
        while not self._halt.is_set():
            try:
                self.function()
            except Exception:
                self.bus.log("Error in measurement tick", level=40, traceback=True)
            (slot, missed) = next_slot(start, self.period, self.clock(), slot)
            if missed:
                self.missed += missed
                print("WARNING: [sgp30] tick overran, skipped {} tick(s)".format(missed))
            self._halt.wait(max(0.0, start + slot * self.period - self.clock()))

def check_port_free (host, port):
    try:
        infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE)
    except socket.gaierror as err:
        raise StartupError("unable to listen on {}:{}: {}".format(host, port, err)) from err
    (family, kind, proto, _, address) = infos[0]
    s = socket.socket(family, kind, proto)
    s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        s.bind(address)
    except OSError as err:
        raise StartupError("unable to listen on {}:{}: {}".format(host, port, err)) from err
    finally:
        s.close()

def start (service, host='0.0.0.0', port=9101, period=1.0):
    """Serve /metrics and drive the measurement ticks until the engine
    exits (SIGTERM/SIGINT). In-flight scrapes finish before the HTTP
    server goes away.
    """
    check_port_free(host, port)
    cherrypy.log.screen = False
    config = {
        'global': {
            'server.socket_host' : host,
            'server.socket_port' : port,
            'engine.autoreload.on' : False,
            'log.access_file'    : '',
            'log.error_file'     : '',
        }
    }

    server    = MetricsServer(service)
    scheduler = MeasurementScheduler(cherrypy.engine, service.tick, period)
    scheduler.subscribe()

    print("INFO: [sgp30] web server starting: {}:{}".format(host, port))
    cherrypy.quickstart(server, '/', config)
    print("INFO: [sgp30] web server finished")
