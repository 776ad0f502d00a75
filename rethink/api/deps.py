"""Shared FastAPI dependencies.

Provides common dependency callables used across route modules.
"""

from typing import Annotated

from fastapi import Depends, Request

from rethink.exceptions import ConfigurationError
from rethink.runtime import ThinkingRuntime


def get_runtime(request: Request) -> ThinkingRuntime:
    """Return the runtime attached to the application by create_app()."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise ConfigurationError("Runtime is not initialised")
    return runtime


RuntimeDep = Annotated[ThinkingRuntime, Depends(get_runtime)]
