"""
Payload resolution for MQTT Stress workers.
Turns a payload mode and template into the bytes sent by each publish call.
"""

import json
import logging
from typing import Dict, Optional

from mqtt_stress.models.worker_config import PayloadMode
from mqtt_stress.utils.fake_data import generate_value


class PayloadFormatError(ValueError):
    """A generated-field spec or incrementing counter could not be parsed."""


def parse_field_spec(template: str) -> Dict[str, str]:
    """
    Parse a "name:type,name:type" spec into a field -> type tag mapping.

    Raises:
        PayloadFormatError: If any entry does not split into exactly two non-empty parts
    """
    fields: Dict[str, str] = {}
    for entry in template.split(","):
        parts = entry.split(":")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise PayloadFormatError(
                f"failed to parse custom payload field {entry!r}, "
                f"expected to find key and type separated by \":\""
            )
        fields[parts[0]] = parts[1]
    return fields


def render_fields(fields: Dict[str, str]) -> bytes:
    """Render one structured JSON payload with fresh values for every field."""
    document = {name: generate_value(type_tag) for name, type_tag in fields.items()}
    return json.dumps(document).encode("utf-8")


class PayloadResolver:
    """
    Produces the payload for a single worker's next publish.

    The resolver is owned by exactly one worker, which also makes it the owner of
    the incrementing counter. `resolve()` raises on malformed templates;
    `next_payload()` is what the publish loop calls and never raises.
    """

    def __init__(self, mode: PayloadMode, template: str, worker_id: str = ""):
        self.mode = mode
        self.template = template
        self.worker_id = worker_id
        self.logger = logging.getLogger(__name__)

        self._counter: Optional[int] = None
        self._fields: Optional[Dict[str, str]] = None
        self._template_error: Optional[PayloadFormatError] = None
        self._warned = False

        if mode is PayloadMode.INCREMENTING:
            try:
                self._counter = int(template)
            except (TypeError, ValueError):
                self._template_error = PayloadFormatError(
                    f"incrementing payload start value {template!r} is not an integer"
                )
        elif mode is PayloadMode.GENERATED:
            try:
                self._fields = parse_field_spec(template)
            except PayloadFormatError as e:
                self._template_error = e

    @property
    def counter(self) -> Optional[int]:
        return self._counter

    def resolve(self) -> bytes:
        """Resolve the next payload, raising PayloadFormatError on a malformed template."""
        if self.mode is PayloadMode.STATIC:
            return self.template.encode("utf-8")

        if self._template_error is not None:
            raise self._template_error

        if self.mode is PayloadMode.INCREMENTING:
            self._counter += 1
            return str(self._counter).encode("utf-8")

        return render_fields(self._fields)

    def next_payload(self) -> bytes:
        """
        Resolve the next payload for the publish loop.

        A malformed incrementing start value sends the template unchanged; a malformed
        field spec or a serialization failure sends an empty payload.
        """
        try:
            return self.resolve()
        except PayloadFormatError as e:
            self._warn_once(e)
            if self.mode is PayloadMode.INCREMENTING:
                return self.template.encode("utf-8")
            return b""
        except (TypeError, ValueError) as e:
            self.logger.warning(f"Worker {self.worker_id}: failed to marshal generated json structure: {e}")
            return b""

    def _warn_once(self, error: PayloadFormatError):
        if self._warned:
            self.logger.debug(f"Worker {self.worker_id}: payload format error: {error}")
            return
        self._warned = True
        self.logger.warning(f"Worker {self.worker_id}: payload format error, falling back: {error}")
