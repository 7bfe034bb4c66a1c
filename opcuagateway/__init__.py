"""OPC UA <-> MQTT Gateway Package Initialisation."""

__version__ = "1.0.0"
