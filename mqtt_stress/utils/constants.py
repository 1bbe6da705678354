"""
Constants for MQTT Stress.
Contains run defaults and broker URL scheme tables.
"""

DEFAULT_CLIENT_ID = "mqtt-stress-worker"
DEFAULT_TOPIC_NAMESPACE = "stress"
DEFAULT_PAYLOAD = "mqtt-stress"
DEFAULT_WORKERS = 10
DEFAULT_DELAY = "500ms"
DEFAULT_RUN = "15s"
DEFAULT_CONFIG_FILE = "mqtt-stress.yaml"

# Starting value for the incrementing payload counter
INCREMENT_START = "0"

# Fire-and-forget delivery only
MQTT_QOS = 0

# scheme -> (transport, use_tls, default_port)
BROKER_SCHEMES = {
    "tcp": ("tcp", False, 1883),
    "mqtt": ("tcp", False, 1883),
    "ssl": ("tcp", True, 8883),
    "tls": ("tcp", True, 8883),
    "mqtts": ("tcp", True, 8883),
    "ws": ("websockets", False, 80),
    "wss": ("websockets", True, 443),
}

ENV_URL = "MQTT_STRESS_URL"
ENV_USERNAME = "MQTT_STRESS_USERNAME"
ENV_PASSWORD = "MQTT_STRESS_PASSWORD"
