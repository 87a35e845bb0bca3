# errors.py
"""
Custom exception classes with actionable error messages for ccbridge

All exceptions include:
- Clear error description
- Actionable suggestions
- Relevant context
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class CcBridgeError(Exception):
    """Base exception for all ccbridge errors"""

    def __init__(
        self,
        message: str,
        suggestion: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None
    ):
        self.message = message
        self.suggestion = suggestion
        self.context = context or {}
        self.cause = cause
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error with all details"""
        lines = [
            "",
            "=" * 70,
            f"❌ {self.__class__.__name__}",
            "=" * 70,
            "",
            self.message,
        ]

        if self.context:
            lines.append("")
            lines.append("Context:")
            for key, value in self.context.items():
                lines.append(f"  {key}: {value}")

        if self.suggestion:
            lines.append("")
            lines.append("💡 Suggestion:")
            lines.append(f"  {self.suggestion}")

        if self.cause:
            lines.append("")
            lines.append(f"Caused by: {type(self.cause).__name__}: {self.cause}")

        lines.append("")
        lines.append("=" * 70)
        lines.append("")

        return "\n".join(lines)


class ConfigurationError(CcBridgeError):
    """Configuration is missing or invalid"""
    pass


class PackageLoadError(CcBridgeError):
    """Course package could not be opened"""
    pass


class ManifestError(CcBridgeError):
    """Manifest is missing or unparseable"""
    pass


class ServiceAPIError(CcBridgeError):
    """Error communicating with an external Google service"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        operation: Optional[str] = None,
        **kwargs: Any
    ):
        self.status_code = status_code
        self.operation = operation
        super().__init__(message, **kwargs)


class RetryExhaustedError(ServiceAPIError):
    """A retryable call kept failing after every allowed attempt"""
    pass


class FormBuildError(CcBridgeError):
    """Quiz form could not be assembled"""
    pass


# Specific error factory functions

def missing_manifest_error() -> ManifestError:
    """Create error for a package without imsmanifest.xml"""
    return ManifestError(
        message="imsmanifest.xml not found in package",
        suggestion=(
            "Make sure the file is an IMS Common Cartridge export (.imscc).\n"
            "  The manifest must sit at the root of the archive."
        ),
    )


def invalid_manifest_error(cause: Exception) -> ManifestError:
    """Create error for a manifest that does not parse as XML"""
    return ManifestError(
        message="imsmanifest.xml could not be parsed",
        suggestion="Re-export the course package from the source LMS.",
        cause=cause,
    )


def missing_token_error() -> ConfigurationError:
    """Create error for missing Google access token"""
    return ConfigurationError(
        message="Google API access token not configured",
        suggestion=(
            "Set the CCBRIDGE_ACCESS_TOKEN environment variable:\n"
            "  export CCBRIDGE_ACCESS_TOKEN=ya29....\n\n"
            "Or point ccbridge.yaml at a token file:\n"
            "  google:\n"
            "    token_file: ~/.ccbridge/token.txt"
        ),
        context={
            "checked_locations": [
                "CCBRIDGE_ACCESS_TOKEN environment variable",
                "google.access_token / google.token_file in ccbridge.yaml",
                "~/.ccbridge/config.yaml",
            ]
        }
    )


def http_error(
    status_code: int,
    reason: str,
    operation: str,
    payload: Any = None,
) -> ServiceAPIError:
    """Create error for a failed HTTP call, keeping Google's error detail"""
    return ServiceAPIError(
        message=format_http_error(status_code, reason, payload),
        status_code=status_code,
        operation=operation,
        context={"operation": operation},
    )


def format_http_error(status_code: int, reason: str, payload: Any = None) -> str:
    """
    Render an HTTP failure the way Google error bodies read best.

    Google APIs wrap failures as {"error": {"message", "status", "details"}}.
    """
    message = f"HTTP {status_code} {reason or 'Error'}"
    google_error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(google_error, dict) and google_error.get("message"):
        message += f": {google_error['message']}"
        if google_error.get("details"):
            message += f" Details: {google_error['details']}"
        elif google_error.get("status"):
            message += f" Status: {google_error['status']}"
    elif payload:
        message += f": {payload}"
    return message
