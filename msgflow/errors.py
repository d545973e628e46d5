"""Message flow error types."""

from __future__ import annotations


class CompositionError(Exception):
    """Invalid flow composition, detected while the graph is being built.

    Examples:
    - Unknown endpoint kind or attribute.
    - Duplicate ``when`` label, or a second ``otherwise``, on one router.
    - ``link_to_next=False`` followed by a child without an input channel.
    """


class RoutingError(Exception):
    """A router could not evaluate its routing rule for a message.

    Unmatched routes are not errors (they have no destination); this is
    raised only when the discriminant itself fails or returns something
    that cannot name a channel.
    """

    def __init__(self, message: str, *, router: str | None = None,
                 cause: BaseException | None = None) -> None:
        self.router = router
        self.cause = cause
        super().__init__(message)


class DispatchError(Exception):
    """Message delivery failed inside the runtime."""

    def __init__(self, message: str, *, endpoint: str | None = None,
                 channel: str | None = None,
                 cause: BaseException | None = None) -> None:
        self.endpoint = endpoint
        self.channel = channel
        self.cause = cause
        super().__init__(message)


class RecipientListError(DispatchError):
    """One or more recipients of a recipient-list route failed.

    Every recipient is attempted before this is raised.
    ``failures`` contains one exception per failed recipient.
    """

    def __init__(self, failures: list[BaseException], *,
                 endpoint: str | None = None) -> None:
        self.failures = failures
        super().__init__(
            f"{len(failures)} recipient(s) failed: "
            + "; ".join(type(e).__name__ for e in failures),
            endpoint=endpoint,
        )
