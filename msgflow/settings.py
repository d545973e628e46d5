"""Runtime settings for an integration context."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass
class IntegrationSettings:
    """Configuration for dispatch.

    ``fanout_workers`` — recipient-list copies are delivered on a thread
    pool of this size; 1 delivers them one after another in the calling
    thread.
    ``reply_timeout`` — seconds ``send_and_receive_async`` waits for a
    reply (``None`` waits forever).
    ``validate_routes`` — static router destinations must be consumed by
    some endpoint of the composition.
    """

    fanout_workers: int = 1
    reply_timeout: Optional[float] = None
    validate_routes: bool = True

    def __post_init__(self) -> None:
        if self.fanout_workers < 1:
            raise ValueError(f"fanout_workers must be >= 1, got {self.fanout_workers}")
        if self.reply_timeout is not None and self.reply_timeout <= 0:
            raise ValueError(f"reply_timeout must be > 0, got {self.reply_timeout}")

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None, prefix: str = "MSGFLOW_"
    ) -> "IntegrationSettings":
        """Read ``{prefix}FANOUT_WORKERS``, ``{prefix}REPLY_TIMEOUT`` and
        ``{prefix}VALIDATE_ROUTES``; unset variables keep their defaults."""
        env = os.environ if environ is None else environ
        kwargs: dict = {}

        workers = env.get(f"{prefix}FANOUT_WORKERS")
        if workers:
            kwargs["fanout_workers"] = int(workers)

        timeout = env.get(f"{prefix}REPLY_TIMEOUT")
        if timeout:
            kwargs["reply_timeout"] = None if timeout.lower() == "none" else float(timeout)

        validate = env.get(f"{prefix}VALIDATE_ROUTES")
        if validate:
            flag = validate.strip().lower()
            if flag not in _TRUE | _FALSE:
                raise ValueError(f"{prefix}VALIDATE_ROUTES must be a boolean, got {validate!r}")
            kwargs["validate_routes"] = flag in _TRUE

        return cls(**kwargs)
