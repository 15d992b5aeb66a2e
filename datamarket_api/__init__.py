"""Consumer node for the IoT measurement data marketplace."""

__version__ = "0.1.0"
