import os
import sys
import setproctitle
import cherrypy
import sgp30_exporter_config
import i2c_transport
import humidity_provider
import web_metrics
from sgp30_service import SGP30Service
from sgp30_errors import StartupError, TransportError

def notify_systemd ():
    # only root runs under the unit file
    if os.getuid() != 0:
        return
    try:
        import systemd.daemon
    except ImportError:
        print("WARNING: [sgp30] systemd module missing, not notifying READY")
        return
    systemd.daemon.notify(systemd.daemon.Notification.READY)

def make_service (transport, config=sgp30_exporter_config):
    period   = config.period
    humidity = humidity_provider.make_provider(config.humidity_url,
                                               config.humidity_mac,
                                               config.effective_humidity_timeout())
    if config.humidity_url:
        print("INFO: [sgp30] humidity compensation from", config.humidity_url,
              "device " + config.humidity_mac if config.humidity_mac else "")
    return SGP30Service(transport, humidity,
                        humidity_max_age=3.0 * period,
                        baseline_interval=config.baseline_interval)

def run ():
    config = sgp30_exporter_config
    setproctitle.setproctitle("sgp30: exporter")

    config.load()
    transport = i2c_transport.open_bus(config.i2c_frequency)
    service   = make_service(transport, config)
    try:
        service.start(self_test=config.self_test, baseline=config.baseline())
    except TransportError as err:
        transport.close()
        raise StartupError("sensor not responding: {}".format(err)) from err
    except Exception:
        transport.close()
        raise

    cherrypy.engine.subscribe('start', notify_systemd, priority=90)
    try:
        web_metrics.start(service, config.host, config.port, config.period)
    finally:
        transport.close()

def main ():
    try:
        run()
    except StartupError as err:
        print("ERROR: [sgp30]", err, file=sys.stderr)
        sys.exit(1)

if __name__ == '__main__':
    main()
