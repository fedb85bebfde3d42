"""Authentication helpers and route dependencies."""

from fastapi import Depends, Header, Request


class FunctionKeyError(Exception):
    """Raised when the manual trigger is called without the expected key."""


def require_function_key(
    request: Request,
    x_functions_key: str | None = Header(default=None, alias="x-functions-key"),
) -> None:
    """
    Check the shared function key when one is configured.

    An empty ``FUNCTION_KEY`` leaves the manual trigger open, which is how the
    service runs locally.
    """

    expected_key = request.app.state.settings.function_key
    if not expected_key:
        return

    if x_functions_key != expected_key:
        raise FunctionKeyError("Invalid function key.")


FunctionKeyDependency = Depends(require_function_key)
