"""
Result dicts returned by the runner to the CLI commands.

Every run ends in one of two shapes: ``{"success": True, "data": ...}`` or
``{"success": False, "error": ...}``. A failed bootstrap also carries the
partial cluster state so callers can tell which nodes were left running.
Server responses echoed in error details never include the user password.
"""

import traceback
from typing import Any, Optional

from phil.commands.errors import BootstrapError, PhilError


def ok(data: Optional[Any] = None, **extras: Any) -> dict[str, Any]:
    """A successful run; ``extras`` become top-level keys (e.g. ``uri``)."""
    result: dict[str, Any] = {"success": True}
    if data is not None:
        result["data"] = data
    result.update(extras)
    return result


def fail(
    message: str, *, error: Optional[Exception] = None, **extras: Any
) -> dict[str, Any]:
    """A failed run.

    With a PhilError, its type, code and details are lifted to
    ``error_type``, ``error_code`` and ``error_details``; with a
    BootstrapError that recorded progress, ``state`` holds the partial
    ClusterState as a dict.
    """
    result: dict[str, Any] = {"success": False, "error": message}
    if error is None:
        result.update(extras)
        return result

    described = format_error(error)
    result["exception"] = described
    result["error_type"] = described["type"]
    for key in ("code", "details"):
        if key in described:
            result[f"error_{key}"] = described[key]

    state = error.state if isinstance(error, BootstrapError) else None
    if state is not None:
        result["state"] = state.to_dict()

    result.update(extras)
    return result


def format_error(error: Exception) -> dict[str, Any]:
    """Describe ``error`` as a dict, with its traceback as one string."""
    if isinstance(error, PhilError):
        described = error.to_dict()
    else:
        described = {"type": type(error).__name__, "message": str(error)}
    described["traceback"] = "".join(
        traceback.format_exception(type(error), error, error.__traceback__)
    )
    return described
