"""
Helpers for turning pydantic validation failures into readable messages.
"""
from pydantic import ValidationError as PydanticValidationError


def describe_pydantic_error(error: PydanticValidationError) -> str:
    """
    Flattens a pydantic error into ``location: message`` pairs.

    :param error: The pydantic validation error.
    :return: A single-line description.
    """
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ()))
        message = item.get("msg", "invalid value")
        # Messages raised from our own validators come prefixed by pydantic
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)
