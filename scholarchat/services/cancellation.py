from __future__ import annotations

from dataclasses import dataclass, field

from scholarchat.models.chat import new_id


@dataclass(eq=False)
class CancellationToken:
    """Cooperative cancellation handle for one unit of work."""

    id: str = field(default_factory=new_id)
    _cancelled: bool = field(default=False, repr=False)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class CancellationRegistry:
    """Live tokens keyed by id, one per in-flight fetch+stream unit."""

    def __init__(self) -> None:
        self._tokens: dict[str, CancellationToken] = {}

    @property
    def live(self) -> int:
        return len(self._tokens)

    def open(self) -> CancellationToken:
        token = CancellationToken()
        self._tokens[token.id] = token
        return token

    def complete(self, token: CancellationToken) -> None:
        self._tokens.pop(token.id, None)

    def abort_all(self) -> int:
        tokens = list(self._tokens.values())
        self._tokens.clear()
        for token in tokens:
            token.cancel()
        return len(tokens)
