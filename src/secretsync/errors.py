# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/errors.py
class CertControllerError(RuntimeError):
    """Base class for certcontroller failures."""


class PermanentError(CertControllerError):
    """Failure that retrying will not fix without operator action."""


class FormatError(PermanentError):
    """Raised when PEM material is missing or cannot be decoded."""


class ShapeError(PermanentError):
    """Raised when a target resource lacks the structure we inject into."""


class NotFoundError(CertControllerError):
    """Raised when a resource or credential record does not exist."""


class RetryableError(CertControllerError):
    """Failure expected to clear on a later attempt."""


class ConflictError(RetryableError):
    """Raised when a version-checked write lost against another writer."""


class TransientError(RetryableError):
    """Raised on API or connectivity failures."""


class CryptoError(RetryableError):
    """Raised when key generation or certificate signing fails."""


class CANotReadyError(CertControllerError):
    """The credential record exists but carries no CA certificate yet."""


class NotReadyError(CertControllerError):
    """Raised by readiness checks."""
