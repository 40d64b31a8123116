"""Error taxonomy shared by every componentforge layer.

Three kinds, never conflated:

- **Fatal** (``FatalError`` and subclasses): malformed input or an
  unsupported configuration.  Surfaced as-is, not retried by the core.
- **Retriable** (``RetriableError``): a transient condition such as a
  source or dependency that is not ready yet.  Carries an optional
  suggested delay; the caller's scheduler decides what to do with it.
- **Precondition violations** (``PreconditionViolation``): a caller defect,
  e.g. binding a source reference twice.  Must abort loudly.
"""

from __future__ import annotations


class ComponentForgeError(Exception):
    """Base class of all domain errors raised by componentforge."""


class FatalError(ComponentForgeError):
    """A terminal failure; retrying without a spec change will not help."""


class ConfigurationError(FatalError):
    """The component spec is malformed or asks for something unsupported."""


class SourceError(FatalError):
    """An HTTP source could not be queried or returned a malformed answer."""


class ArchiveError(FatalError):
    """The source archive could not be downloaded or contains a bad entry."""


class DecryptionError(FatalError):
    """An encrypted document could not be decrypted."""


class GeneratorError(FatalError):
    """A manifest generator could not be constructed or failed to render."""


class SubstitutionError(FatalError):
    """A manifest became malformed after post-build variable substitution."""


class RetriableError(ComponentForgeError):
    """A transient condition; the attempt should be retried later.

    Parameters
    ----------
    message:
        Human-readable cause, surfaced on the component status.
    retry_after:
        Suggested delay in seconds, or ``None`` to defer to the
        scheduler's default backoff.
    """

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class PreconditionViolation(AssertionError):
    """Raised when a caller breaks an API contract.

    Deliberately not a ``ComponentForgeError``: hook classification never
    catches it, so it escapes to the top of the worker.
    """
