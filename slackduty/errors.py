# slackduty/errors.py
from __future__ import annotations


class SlackdutyError(Exception):
    """Base class for every error raised by the sync engine."""


# ---- Selectors --------------------------------------------------------------


class SelectorError(SlackdutyError, ValueError):
    """A selector string could not be used in the place it was given."""


class FormatError(SelectorError):
    """Raised when a selector is not exactly '<kind>:<value>'."""

    def __init__(self, raw: str, reason: str = "must be '<kind>:<value>'") -> None:
        self.raw = raw
        super().__init__(f"selector {raw!r} is malformed: {reason}")


class UnsupportedKindError(SelectorError):
    """Raised when a selector kind is not accepted by the calling context."""

    def __init__(self, kind: str, value: str, allowed: tuple[str, ...] = (), context: str = "") -> None:
        self.kind = kind
        self.value = value
        self.allowed = allowed
        self.context = context
        where = f" for {context}" if context else ""
        expected = f", must be one of {', '.join(allowed)}" if allowed else ""
        super().__init__(f"selector kind {kind!r} is not supported{where} ({kind}:{value}){expected}")


# ---- Resolution -------------------------------------------------------------


class ResolutionError(SlackdutyError):
    """A roster entry could not be turned into members."""


class NotFoundError(ResolutionError):
    def __init__(self, kind: str, value: str, what: str = "entry") -> None:
        self.kind = kind
        self.value = value
        self.what = what
        super().__init__(f"no {what} exists for {kind}:{value}")


class AmbiguousLookupError(ResolutionError):
    """
    A name-style lookup matched more than one entity. We never pick one;
    the config must be made precise (usually by switching to id:...).
    """

    def __init__(self, kind: str, value: str, count: int, what: str = "entry") -> None:
        self.kind = kind
        self.value = value
        self.count = count
        self.what = what
        super().__init__(f"more than one {what} exists for {kind}:{value} (got {count})")


# ---- Pipeline ---------------------------------------------------------------


class UsergroupNotFoundError(SlackdutyError):
    def __init__(self, handle: str) -> None:
        self.handle = handle
        super().__init__(f"Slack usergroup does not exist for handle: {handle}")


class ExternalCallError(SlackdutyError):
    """
    Wraps a failed PagerDuty/Slack call (transport, auth, HTTP status or an
    API-level error code). The original exception is chained as __cause__.
    """

    def __init__(self, service: str, message: str, status: int | None = None) -> None:
        self.service = service
        self.message = message
        self.status = status
        suffix = f" (HTTP {status})" if status is not None else ""
        super().__init__(f"{service} call failed: {message}{suffix}")

    @property
    def not_found(self) -> bool:
        return self.status == 404 or self.message in {"users_not_found", "user_not_found", "no_such_subteam"}


class SyncCancelled(SlackdutyError):
    """The cancel token was set between pipeline stages."""


class EmptyMembershipWarning(UserWarning):
    """Logged (never raised) when a group resolves to zero members."""
