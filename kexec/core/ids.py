import re
import uuid

# Canonical textual form of a UUID, e.g. 6fa459ea-ee8a-11e6-8d0e-0242ac130003
UUID_LENGTH = 36
UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")


def new_time_based_id() -> str:
    """Time-ordered unique id (RFC 4122 version 1) used as correlation id."""
    return str(uuid.uuid1())


def is_uuid(value: str) -> bool:
    return bool(UUID_PATTERN.match(value or ""))
