from sgp30_errors import TransportError, StartupError
from sgp30_codec import SGP30_I2C_ADDRESS

class I2CTransport (object):
    """Raw bytes to and from one device address. Knows nothing about
    the SGP30 protocol. `device` is an adafruit_bus_device I2CDevice or
    anything with the same context manager / write / readinto shape.
    """

    def __init__ (self, device, bus=None):
        self.device = device
        self.bus    = bus

    def write (self, data):
        try:
            with self.device as i2c:
                i2c.write(bytes(data))
        except (OSError, RuntimeError) as err:
            raise TransportError("i2c write failed: {}".format(err)) from err

    def read (self, count):
        buf = bytearray(count)
        try:
            with self.device as i2c:
                i2c.readinto(buf)
        except (OSError, RuntimeError) as err:
            raise TransportError("i2c read failed: {}".format(err)) from err
        return bytes(buf)

    def close (self):
        if self.bus:
            self.bus.deinit()
            self.bus = None

def open_bus (frequency=100000, address=SGP30_I2C_ADDRESS):
    """Open the board's default I2C pins and probe the sensor. Anything
    going wrong here is fatal.
    """
    try:
        import board
        import busio
        from adafruit_bus_device.i2c_device import I2CDevice
    except (ImportError, NotImplementedError) as err:
        raise StartupError("no usable I2C support: {}".format(err)) from err

    try:
        bus = busio.I2C(board.SCL, board.SDA, frequency=frequency)
    except (OSError, RuntimeError, ValueError) as err:
        raise StartupError("unable to open I2C bus: {}".format(err)) from err

    try:
        device = I2CDevice(bus, address)
    except (OSError, ValueError) as err:
        bus.deinit()
        raise StartupError("no SGP30 at 0x{:02X}: {}".format(address, err)) from err

    return I2CTransport(device, bus)
