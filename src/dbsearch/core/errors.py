"""
Error Taxonomy and Global Error Handling

This module defines the exceptions raised across the indexing stack and the
application-wide exception handler for the admin API.

Taxonomy
--------
- SchemaNotProvisioned : search schema still missing after one self-heal
- TransientStoreError  : a host store call failed inside a batch
- InvalidRecord        : a document cannot be projected (bad id, no container)
- ConfigurationError   : persisted settings are malformed

Design Goals
------------
- Never leak internal exception details to clients
- Always return deterministic, machine-readable error responses
- Log full stack traces internally for debugging
"""

from __future__ import annotations

import logging
from typing import Dict, Any

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("dbsearch.errors")


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class DbSearchError(RuntimeError):
    """Base error for search indexing failures."""


class SchemaNotProvisioned(DbSearchError):
    """
    Raised when an engine still reports missing tables/indexes after the
    adapter provisioned them and retried the call once.
    """


class TransientStoreError(DbSearchError):
    """Raised when the host content store fails while a batch is processed."""


class InvalidRecord(DbSearchError, ValueError):
    """Raised for documents with a missing/zero id or unresolvable container."""


class ConfigurationError(DbSearchError, ValueError):
    """Raised when persisted plugin settings cannot be parsed."""


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    Behavior
    --------
    - Logs the full exception stack trace for internal diagnostics.
    - Returns a generic 500 error to the client with no internal details.

    Parameters
    ----------
    request : Request
        The incoming HTTP request that triggered the exception.

    exc : Exception
        The uncaught exception instance.

    Returns
    -------
    JSONResponse
        A JSON 500 response with a minimal error payload.
    """
    logger.exception(
        "Unhandled dbsearch exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "detail": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )
