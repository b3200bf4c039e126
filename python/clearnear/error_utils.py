"""
Error types and factories that give operators actionable guidance.

Registry failures always carry the repository/tag/digest that produced them,
so a message can be acted on without re-running with --verbose.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    """Categories of errors for better error handling"""
    CONNECTION = "connection"
    AUTHENTICATION = "authentication"
    CONFIGURATION = "configuration"
    PERMISSION = "permission"
    RESOURCE = "resource"
    NETWORK = "network"
    TIMEOUT = "timeout"
    PROTOCOL = "protocol"
    UNKNOWN = "unknown"


class ActionableError(Exception):
    """Exception with actionable guidance for users"""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize actionable error

        Args:
            message: Primary error message
            category: Error category for classification
            suggestions: List of suggested fixes
            details: Additional context information
        """
        self.message = message
        self.category = category
        self.suggestions = suggestions or []
        self.details = details or {}
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message with suggestions"""
        lines = [self.message]

        if self.suggestions:
            lines.append("  Suggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        if self.details:
            lines.append("  Additional details:")
            for key, value in self.details.items():
                lines.append(f"   {key}: {value}")

        return "\n".join(lines)


class ConfigurationError(ActionableError):
    """Invalid strategy selection or configuration; raised before any network call."""

    def __init__(self, message: str, suggestions: Optional[List[str]] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCategory.CONFIGURATION, suggestions, details)


class RegistryError(ActionableError):
    """Transport or protocol failure talking to the registry."""

    def __init__(self, message: str, operation: str, repository: Optional[str] = None,
                 tag: Optional[str] = None, digest: Optional[str] = None,
                 status_code: Optional[int] = None,
                 category: ErrorCategory = ErrorCategory.PROTOCOL,
                 suggestions: Optional[List[str]] = None):
        self.operation = operation
        self.repository = repository
        self.tag = tag
        self.digest = digest
        self.status_code = status_code
        details = {"operation": operation}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, category, suggestions, details)


def describe_target(repository: Optional[str] = None, tag: Optional[str] = None,
                    digest: Optional[str] = None) -> str:
    """Render 'repo:tag', 'repo@digest' or 'repo' for messages."""
    if repository is None:
        return "registry"
    if tag is not None:
        return f"{repository}:{tag}"
    if digest is not None:
        return f"{repository}@{digest}"
    return repository


def create_registry_status_error(operation: str, status_code: int, repository: Optional[str] = None,
                                 tag: Optional[str] = None, digest: Optional[str] = None) -> RegistryError:
    """Create error for a non-success HTTP status"""
    target = describe_target(repository, tag, digest)
    suggestions = []
    category = ErrorCategory.PROTOCOL

    if status_code == 401:
        category = ErrorCategory.AUTHENTICATION
        suggestions = [
            "Set REGISTRY_USERNAME and REGISTRY_PASSWORD (or registry.username/password in config.yaml)",
            "Verify the credentials have not expired or been rotated",
        ]
    elif status_code == 403:
        category = ErrorCategory.PERMISSION
        suggestions = ["Verify the account is allowed to perform this operation on the repository"]
    elif status_code == 404:
        category = ErrorCategory.RESOURCE
        suggestions = ["The repository, tag or digest may have been removed by another process"]
    elif status_code == 405 and operation == "delete_manifest":
        category = ErrorCategory.PERMISSION
        suggestions = [
            "Registry delete is not enabled; start the registry with REGISTRY_STORAGE_DELETE_ENABLED=true",
        ]
    elif status_code == 429:
        category = ErrorCategory.NETWORK
        suggestions = [
            "Reduce resolver.max_workers in config.yaml",
            "Enable registry.rate_limit in config.yaml",
        ]
    elif status_code >= 500:
        category = ErrorCategory.CONNECTION
        suggestions = ["Check the registry logs; the server reported an internal error"]

    return RegistryError(
        f"{operation} for {target} returned status {status_code}",
        operation=operation,
        repository=repository,
        tag=tag,
        digest=digest,
        status_code=status_code,
        category=category,
        suggestions=suggestions,
    )


def create_registry_connection_error(registry_url: str, operation: str, error: Exception,
                                     repository: Optional[str] = None, tag: Optional[str] = None,
                                     digest: Optional[str] = None) -> RegistryError:
    """Create actionable error for registry connection failures"""
    error_str = str(error).lower()
    target = describe_target(repository, tag, digest)

    suggestions = [
        f"Verify the registry URL is correct: {registry_url}",
        "Check network connectivity to the registry",
        "Check if the registry service is running",
    ]
    category = ErrorCategory.CONNECTION

    if "timeout" in error_str or "timed out" in error_str:
        category = ErrorCategory.TIMEOUT
        suggestions.insert(1, "Increase registry.timeout in config.yaml")

    if "name resolution" in error_str or "nodename" in error_str:
        suggestions.insert(1, "Verify DNS resolution for the registry hostname")

    if "certificate" in error_str or "ssl" in error_str:
        suggestions.insert(1, "Set registry.verify_tls to false for registries with self-signed certificates")

    return RegistryError(
        f"{operation} for {target} failed: {type(error).__name__}: {error}",
        operation=operation,
        repository=repository,
        tag=tag,
        digest=digest,
        category=category,
        suggestions=suggestions,
    )


def create_registry_protocol_error(operation: str, reason: str, repository: Optional[str] = None,
                                   tag: Optional[str] = None, digest: Optional[str] = None) -> RegistryError:
    """Create error for a malformed or incomplete registry response"""
    target = describe_target(repository, tag, digest)
    return RegistryError(
        f"{operation} for {target}: {reason}",
        operation=operation,
        repository=repository,
        tag=tag,
        digest=digest,
        category=ErrorCategory.PROTOCOL,
    )


def create_config_error(field: str, value: Any, reason: str) -> ConfigurationError:
    """Create actionable error for configuration validation failures"""
    suggestions = [
        f"Check the '{field}' value in config.yaml or on the command line",
        "Check config-example.yaml for the expected format",
    ]

    if "url" in field.lower() or "registry" in field.lower():
        suggestions.insert(1, "URL should be in format: http(s)://hostname[:port]")
    elif "pattern" in field.lower():
        suggestions.insert(1, "Patterns use Python regular expression syntax and match anywhere in the tag")

    return ConfigurationError(
        f"Configuration error: Invalid value for '{field}': {reason}",
        suggestions=suggestions,
        details={"field": field, "value": value},
    )
