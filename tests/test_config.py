import importlib
import pytest
import sgp30_exporter_config
from sgp30_errors import ConfigError, StartupError

@pytest.fixture
def config ():
    return importlib.reload(sgp30_exporter_config)

def test_defaults (config):
    config.load(path="/nonexistent/sgp30.ini", environ={})
    assert config.port == 9101
    assert config.period == 1.0
    assert config.humidity_url is None
    assert config.humidity_mac is None
    assert config.baseline() is None
    assert config.self_test is False

def test_environment (config):
    config.read_environment({
        "PORT" : "9200",
        "PERIOD" : "5",
        "HUMIDITY_URL" : "http://ruuvi:9521/metrics",
        "HUMIDITY_MAC" : "AA:BB:CC:DD:EE:01",
        "BASELINE_ECO2" : "0x8973",
        "BASELINE_TVOC" : "35502",
        "SELF_TEST" : "yes",
    })
    assert config.port == 9200
    assert config.period == 5.0
    assert config.humidity_url == "http://ruuvi:9521/metrics"
    assert config.humidity_mac == "AA:BB:CC:DD:EE:01"
    assert config.baseline() == (0x8973, 0x8AAE)
    assert config.self_test is True

def test_empty_humidity_url_means_unset (config):
    config.read_environment({"HUMIDITY_URL" : "  "})
    assert config.humidity_url is None

@pytest.mark.parametrize("name,value", [
    ("PORT", "http"),
    ("PORT", "70000"),
    ("PERIOD", "0"),
    ("PERIOD", "-1"),
    ("PERIOD", "nan"),
    ("BASELINE_ECO2", "0x10000"),
    ("SELF_TEST", "maybe"),
])
def test_bad_values (config, name, value):
    with pytest.raises(ConfigError) as info:
        config.read_environment({name : value})
    assert info.value.name == name
    assert isinstance(info.value, StartupError)

def test_humidity_timeout_shorter_than_period (config):
    config.read_environment({"PERIOD" : "10"})
    assert config.effective_humidity_timeout() == 2.0
    config.read_environment({"PERIOD" : "1"})
    assert config.effective_humidity_timeout() == 0.5
    config.read_environment({"PERIOD" : "1", "HUMIDITY_TIMEOUT" : "3"})
    assert config.effective_humidity_timeout() < 1.0

def test_ini_file_overridden_by_environment (config, tmp_path):
    ini = tmp_path / "sgp30.ini"
    ini.write_text("[EXPORTER]\nport = 9300\nperiod = 2\nhumidity_url = http://a/metrics\n")
    config.load(path=str(ini), environ={"PORT" : "9400"})
    assert config.port == 9400
    assert config.period == 2.0
    assert config.humidity_url == "http://a/metrics"

def test_ini_percent_encoded_url (config, tmp_path):
    ini = tmp_path / "sgp30.ini"
    ini.write_text("[EXPORTER]\nhumidity_url = http://h/metrics?q=a%20b\n")
    config.load(path=str(ini), environ={})
    assert config.humidity_url == "http://h/metrics?q=a%20b"

def test_ini_without_section_header (config, tmp_path):
    ini = tmp_path / "sgp30.ini"
    ini.write_text("port = 9300\n")
    with pytest.raises(ConfigError) as info:
        config.load(path=str(ini), environ={})
    assert isinstance(info.value, StartupError)
    assert str(ini) in str(info.value)
