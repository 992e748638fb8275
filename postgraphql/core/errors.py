"""
Error types shared across the service.
"""

from __future__ import annotations


class PostGraphQLError(RuntimeError):
    pass


# Raised synchronously while turning the connection input into a pool.
class ConnectionResolutionError(PostGraphQLError):
    pass


class ConnectionAcquisitionError(PostGraphQLError):
    pass


class SchemaBuildError(PostGraphQLError):
    pass


class SchemaConstructionError(PostGraphQLError):
    """
    Terminal failure of the one schema build attempt.

    `original_error` is the exception that stopped the build (also chained as
    `__cause__`).
    """

    def __init__(self, message: str, original_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.original_error = original_error
