"""
MQTT Stress - load generation harness for MQTT brokers.
"""

__version__ = "0.1.0"
