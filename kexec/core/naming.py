import re

from .errors import EmptyInput, InvalidName

# Function names are called as a Python function by the entrypoint and end up
# in "<name>-<uuid>" job names, which must be DNS-1123 labels of <= 63 chars.
FUNCTION_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9]*$")
FUNCTION_NAME_MAX_LENGTH = 63 - 37

# A single registry path component: registry/<user>/<function>
USER_ID_PATTERN = re.compile(r"^[a-z0-9]+(?:[._-][a-z0-9]+)*$")
USER_ID_MAX_LENGTH = 128


def validate_function_name(function_name: str) -> str:
    if not function_name:
        raise EmptyInput("function name")
    if len(function_name) > FUNCTION_NAME_MAX_LENGTH:
        raise InvalidName("function name", function_name,
                          f"at most {FUNCTION_NAME_MAX_LENGTH} characters")
    if not FUNCTION_NAME_PATTERN.match(function_name):
        raise InvalidName("function name", function_name,
                          "must start with a lowercase letter and contain only lowercase letters and digits")
    return function_name


def validate_user_id(user_id: str) -> str:
    if not user_id:
        raise EmptyInput("user id")
    if len(user_id) > USER_ID_MAX_LENGTH or not USER_ID_PATTERN.match(user_id):
        raise InvalidName("user id", user_id,
                          "must be lowercase alphanumerics separated by '.', '_' or '-'")
    return user_id


def image_reference(registry: str, user_id: str, function_name: str) -> str:
    """Fully-qualified image reference registry/user/function."""
    return f"{registry.rstrip('/')}/{user_id}/{function_name}"
