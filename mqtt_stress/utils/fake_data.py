"""
Synthetic field values for generated payloads.
"""

import random
import uuid

_NAME_PARTS = [
    "amber", "bolt", "cedar", "delta", "ember", "falcon", "glacier", "harbor",
    "indigo", "jasper", "kestrel", "lumen", "maple", "nova", "onyx", "pike",
    "quartz", "raven", "sable", "tundra", "umber", "vortex", "willow", "zephyr",
]

_FIRST_NAMES = [
    "alex", "blair", "casey", "dana", "eli", "frankie", "gray", "harper",
    "jordan", "kai", "logan", "morgan", "quinn", "riley", "sam", "taylor",
]

_LAST_NAMES = [
    "adams", "baker", "clark", "diaz", "evans", "fischer", "garcia", "hughes",
    "ito", "jensen", "khan", "lopez", "moreau", "novak", "okafor", "patel",
]

_DOMAINS = ["example.com", "example.net", "example.org", "mail.test", "inbox.test"]


def random_number() -> int:
    return random.randint(1, 9999)


def random_username() -> str:
    return f"{random.choice(_NAME_PARTS).capitalize()}{random.choice(_NAME_PARTS)}{random.randint(0, 999)}"


def random_id() -> str:
    return str(uuid.uuid4())


def random_phone() -> str:
    # No leading zero so the value reads as a dialable number
    return str(random.randint(2, 9)) + "".join(str(random.randint(0, 9)) for _ in range(9))


def random_email() -> str:
    return f"{random.choice(_FIRST_NAMES)}{random.choice(_LAST_NAMES)}{random.randint(1, 99)}@{random.choice(_DOMAINS)}"


FIELD_GENERATORS = {
    "number": random_number,
    "string": random_username,
    "id": random_id,
    "phone": random_phone,
    "email": random_email,
}


def generate_value(type_tag: str):
    """Return a fresh value for a type tag; unknown tags are passed through literally."""
    generator = FIELD_GENERATORS.get(type_tag)
    if generator is None:
        return type_tag
    return generator()
