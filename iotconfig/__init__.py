"""Loading and validation of IoT device gateway configuration files."""

__version__ = "3.0.0"
__all__ = ["config", "devices", "duration", "filters", "genset", "mqtt", "server", "transform"]