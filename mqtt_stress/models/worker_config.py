"""
Worker model for MQTT Stress.
Contains the immutable per-worker configuration and the payload mode enum.
"""

from dataclasses import dataclass, replace
from enum import Enum


class PayloadMode(Enum):
    """How each outgoing message body is produced."""
    STATIC = "static"              # template is the literal payload
    INCREMENTING = "incrementing"  # template is the starting integer
    GENERATED = "generated"        # template is "field:type,field:type"


@dataclass(frozen=True)
class WorkerConfig:
    """Represents one simulated client in the stress run."""
    client_id: str
    url: str
    message_delay: float
    username: str = ""
    password: str = ""
    topic: str = ""
    payload_mode: PayloadMode = PayloadMode.STATIC
    payload: str = ""

    def for_worker(self, index: int, namespace: str) -> "WorkerConfig":
        """Derive the config of worker `index` from this template."""
        worker_id = f"{self.client_id}-{index}"
        return replace(self, client_id=worker_id, topic=f"{namespace}/{worker_id}")
