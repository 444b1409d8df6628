"""
Deployment Errors

Fatal, pre-transaction failures of a deployment call. Each carries the
HTTP status the API layer answers with. Per-module failures and sub-resource
warnings are not exceptions; they are values in the DeploymentResult.
"""


class DeploymentError(Exception):
    """Base class for fatal deployment errors."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DeploymentError):
    """Request is missing a required field."""

    status_code = 400


class BadRequestError(DeploymentError):
    """Request is well-formed but cannot be deployed (e.g. empty package)."""

    status_code = 400


class NotFoundError(DeploymentError):
    """Tenant or template does not exist or is inactive."""

    status_code = 404


class AccessDeniedError(NotFoundError):
    """Template exists but is not visible to the tenant. Answered as 404."""


class ConflictError(DeploymentError):
    """Nothing left to deploy, or another deployment holds the tenant."""

    status_code = 409
