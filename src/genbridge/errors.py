"""
Errors - Exception taxonomy shared by every layer.

Each exception carries a short ``category`` that callers use as the title
of the user-facing message; ``str(error)`` is the description.

- Binding errors: NotMappable, IncompatibleType, BindingIndexError
- Provider errors: UnknownModel, MissingCredential, UnsupportedCapability,
  BackendExecutionFailed (+ AuthenticationError, RateLimitError), EmptyResult
- Request errors: InvalidGenerationConfig, MappingFormatError
"""

from __future__ import annotations


class GenBridgeError(Exception):
    """Base exception for all genbridge errors."""
    category: str = "Error"


# ----------------------------------------------------------------------------
# Graph / binding errors
# ----------------------------------------------------------------------------

class MappingFormatError(GenBridgeError):
    """A graph or mapping document could not be parsed."""
    category = "Invalid mapping"


class NotMappable(GenBridgeError):
    """Binding attempted on an input that is driven by another node."""
    category = "Not mappable"


class IncompatibleType(GenBridgeError):
    """Canonical target does not accept the input's current value type."""
    category = "Incompatible type"


class BindingIndexError(GenBridgeError, IndexError):
    """Index-addressed binding operation with an index out of range."""
    category = "Unknown binding"


# ----------------------------------------------------------------------------
# Request errors
# ----------------------------------------------------------------------------

class InvalidGenerationConfig(GenBridgeError):
    """A generation request was rejected before any task was created."""
    category = "Invalid request"


# ----------------------------------------------------------------------------
# Provider errors
# ----------------------------------------------------------------------------

class ProviderError(GenBridgeError):
    """Base exception for provider errors."""
    category = "Provider error"


class UnknownModel(ProviderError):
    """Model id not in the registry and no family fallback applies."""
    category = "Unknown model"


class MissingCredential(ProviderError):
    """Provider requires an API key and none is configured."""
    category = "Missing credential"


class UnsupportedCapability(ProviderError):
    """Provider does not implement the requested capability."""
    category = "Unsupported capability"


class BackendExecutionFailed(ProviderError):
    """Adapter or graph-execution endpoint returned a non-success response."""
    category = "Generation failed"


class AuthenticationError(BackendExecutionFailed):
    """API key invalid or rejected."""
    category = "Authentication failed"


class RateLimitError(BackendExecutionFailed):
    """Rate limit exceeded."""
    category = "Rate limited"
    retry_after: float | None = None


class EmptyResult(ProviderError):
    """Backend answered successfully but produced no usable output."""
    category = "Empty result"


def describe_error(error: BaseException) -> tuple[str, str]:
    """Return ``(title, description)`` for showing an error to a user."""
    if isinstance(error, GenBridgeError):
        return error.category, str(error) or error.category
    return "Unexpected error", str(error) or type(error).__name__
