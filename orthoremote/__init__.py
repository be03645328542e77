"""Client driver for the Teenage Engineering ortho remote BLE controller."""

__version__ = "0.1.0"
