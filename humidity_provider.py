import concurrent.futures
import http.client
import math
import time
import urllib.error
import urllib.request
from collections import namedtuple
from prometheus_client.parser import text_string_to_metric_families
from sgp30_codec import humidity_to_fixed_point
from sgp30_errors import HumidityFetchError

READ_CHUNK = 1024

HumiditySample = namedtuple("HumiditySample", ["absolute_humidity", "fetched_at"])

def absolute_humidity (relative_percent, celsius):
    """g/m3 from relative humidity and temperature (Magnus formula, as
    given in the SGP30 driver integration guide).
    """
    svp = 6.112 * math.exp((17.62 * celsius) / (243.12 + celsius))
    return 216.7 * ((relative_percent / 100.0) * svp) / (273.15 + celsius)

def normalize_mac (s):
    return str(s).replace(":", "").replace("-", "").lower()

def _matches (sample, mac):
    if mac is None:
        return True
    want = normalize_mac(mac)
    return any(normalize_mac(v) == want for v in sample.labels.values())

def _find (samples, pred):
    for s in samples:
        if pred(s.name):
            return s
    return None

def parse_humidity (text, mac=None):
    """Absolute humidity in g/m3 from a Prometheus text page.

    Prefers a series named *absolute_humidity*. Otherwise takes the
    first *humidity* series as relative humidity (0..1 when the name
    ends in _ratio, percent otherwise) and converts it with the
    *temperature* series carrying the same device labels.
    """
    try:
        samples = [s for f in text_string_to_metric_families(text)
                   for s in f.samples if _matches(s, mac)]
    except (ValueError, TypeError) as err:
        raise HumidityFetchError("unparsable metrics: {}".format(err)) from err

    if not samples:
        raise HumidityFetchError("no series for device {}".format(mac) if mac else "no series")

    ah = _find(samples, lambda n: "absolute_humidity" in n)
    if ah:
        v = float(ah.value)
        if "milligram" in ah.name:
            v = v / 1000.0
        if math.isnan(v):
            raise HumidityFetchError("{} is NaN".format(ah.name))
        return v

    rh = _find(samples, lambda n: "humidity" in n)
    if rh is None:
        raise HumidityFetchError("no humidity series")
    t = _find(samples, lambda n: "temperature" in n)
    if t is None:
        raise HumidityFetchError("{} needs a temperature series".format(rh.name))

    percent = float(rh.value) * (100.0 if rh.name.endswith("_ratio") else 1.0)
    celsius = float(t.value)
    if math.isnan(percent) or math.isnan(celsius):
        raise HumidityFetchError("NaN humidity or temperature")
    return absolute_humidity(percent, celsius)

class NullHumidityProvider (object):
    "No humidity source configured: never compensate"

    def fetch (self):
        return None

class PrometheusHumidityProvider (object):
    """Pulls humidity from another exporter's /metrics page.

    `timeout` bounds the whole fetch (name lookup, connect, a slowly
    trickling body), not just each socket operation. The download runs
    on one worker thread; while a timed out download is still winding
    down, further fetches fail fast instead of stacking up.
    """

    def __init__ (self, url, mac=None, timeout=2.0, clock=time.time):
        self.url      = url
        self.mac      = mac
        self.timeout  = timeout
        self.clock    = clock
        self._worker  = concurrent.futures.ThreadPoolExecutor(max_workers=1,
                                                              thread_name_prefix="humidity fetch")
        self._pending = None

    def _download (self, deadline):
        try:
            with urllib.request.urlopen(self.url, timeout=self.timeout) as resp:
                chunks = []
                while True:
                    if time.monotonic() > deadline:
                        raise HumidityFetchError("fetch {} took longer than {}s".format(self.url, self.timeout))
                    chunk = resp.read1(READ_CHUNK)
                    if not chunk:
                        break
                    chunks.append(chunk)
                return b"".join(chunks).decode("utf-8")
        except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as err:
            raise HumidityFetchError("fetch {} failed: {}".format(self.url, err)) from err

    def read_page (self):
        if self._pending is not None and not self._pending.done():
            raise HumidityFetchError("previous fetch of {} still running".format(self.url))
        self._pending = self._worker.submit(self._download, time.monotonic() + self.timeout)
        try:
            return self._pending.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError:
            raise HumidityFetchError("fetch {} took longer than {}s".format(self.url, self.timeout))

    def fetch (self):
        g_per_m3 = parse_humidity(self.read_page(), self.mac)
        return HumiditySample(absolute_humidity=humidity_to_fixed_point(g_per_m3),
                              fetched_at=self.clock())

def make_provider (url, mac=None, timeout=2.0):
    if not url:
        return NullHumidityProvider()
    return PrometheusHumidityProvider(url, mac, timeout)
