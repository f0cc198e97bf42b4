import configparser
import math
import os, os.path
from sgp30_errors import ConfigError

config_file = '/etc/sgp30_exporter.ini'

# http listener for our own /metrics
host = '0.0.0.0'
port = 9101

# seconds between measurements. the sensor's on-chip algorithm expects 1s
period = 1.0

# optional remote humidity source (another exporter's /metrics page)
humidity_url     = None
humidity_mac     = None
humidity_timeout = None

i2c_frequency = 100000

# restored after iaq_init when both are set
baseline_eco2 = None
baseline_tvoc = None

# seconds between baseline reads once warmed up
baseline_interval = 3600.0

self_test = False

_names = {
    'HOST'              : 'host',
    'PORT'              : 'port',
    'PERIOD'            : 'period',
    'HUMIDITY_URL'      : 'humidity_url',
    'HUMIDITY_MAC'      : 'humidity_mac',
    'HUMIDITY_TIMEOUT'  : 'humidity_timeout',
    'I2C_FREQUENCY'     : 'i2c_frequency',
    'BASELINE_ECO2'     : 'baseline_eco2',
    'BASELINE_TVOC'     : 'baseline_tvoc',
    'BASELINE_INTERVAL' : 'baseline_interval',
    'SELF_TEST'         : 'self_test',
}

def _port (name, s):
    try:
        v = int(s)
    except ValueError:
        raise ConfigError(name, s, "not an integer")
    if not 0 < v < 65536:
        raise ConfigError(name, s, "not a TCP port")
    return v

def _positive_float (name, s):
    try:
        v = float(s)
    except ValueError:
        raise ConfigError(name, s, "not a number")
    if math.isnan(v) or math.isinf(v) or v <= 0:
        raise ConfigError(name, s, "must be > 0")
    return v

def _positive_int (name, s):
    try:
        v = int(s)
    except ValueError:
        raise ConfigError(name, s, "not an integer")
    if v <= 0:
        raise ConfigError(name, s, "must be > 0")
    return v

def _word (name, s):
    try:
        v = int(s, 0)
    except ValueError:
        raise ConfigError(name, s, "not an integer")
    if not 0 <= v <= 0xFFFF:
        raise ConfigError(name, s, "not a 16 bit value")
    return v

def _boolean (name, s):
    v = s.strip().lower()
    if v in ('1', 'yes', 'true', 'on'):
        return True
    if v in ('0', 'no', 'false', 'off', ''):
        return False
    raise ConfigError(name, s, "not a boolean")

def _optional_string (name, s):
    s = s.strip()
    return s if s else None

_parsers = {
    'HOST'              : lambda n, s: s.strip() or '0.0.0.0',
    'PORT'              : _port,
    'PERIOD'            : _positive_float,
    'HUMIDITY_URL'      : _optional_string,
    'HUMIDITY_MAC'      : _optional_string,
    'HUMIDITY_TIMEOUT'  : _positive_float,
    'I2C_FREQUENCY'     : _positive_int,
    'BASELINE_ECO2'     : _word,
    'BASELINE_TVOC'     : _word,
    'BASELINE_INTERVAL' : _positive_float,
    'SELF_TEST'         : _boolean,
}

def _apply (name, raw):
    globals()[_names[name]] = _parsers[name](name, raw)

def read_config_file (path=None):
    """Defaults from an INI file, section [EXPORTER], keys named like
    the environment variables (case insensitive).
    """
    if path is None:
        path = config_file
    if not os.path.exists(path):
        return
    # urls carry %20 and friends: no interpolation
    config = configparser.ConfigParser(interpolation=None)
    try:
        config.read(path)
    except configparser.Error as err:
        raise ConfigError(path, None, "unreadable config file: {}".format(err)) from err
    if 'EXPORTER' not in config:
        return
    section = config['EXPORTER']
    for name in _names:
        if name.lower() in section:
            _apply(name, section[name.lower()])

def read_environment (environ=None):
    if environ is None:
        environ = os.environ
    for name in _names:
        if name in environ:
            _apply(name, environ[name])

def effective_humidity_timeout ():
    """Fetch timeout, always strictly shorter than the measurement period
    so a stalled humidity source can not starve the sensor.
    """
    t = humidity_timeout if humidity_timeout is not None else min(2.0, period * 0.5)
    if t >= period:
        t = period * 0.5
    return t

def baseline ():
    if baseline_eco2 is None or baseline_tvoc is None:
        return None
    return (baseline_eco2, baseline_tvoc)

def load (path=None, environ=None):
    read_config_file(path)
    read_environment(environ)
