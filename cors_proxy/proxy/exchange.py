"""
Per-request lifecycle tracking for the forwarding proxy.

Every inbound request walks one of three paths:

    RECEIVED -> RESPONDED                          (preflight)
    RECEIVED -> FORWARDING -> RELAYING -> RESPONDED (upstream answered)
    RECEIVED -> FORWARDING -> RESPONDED             (upstream failed)

A state is never entered twice, so a request is forwarded at most once and
answered at most once.
"""

import logging
from enum import Enum
from typing import Dict, FrozenSet, List

logger = logging.getLogger("cors_proxy.proxy.exchange")


class ExchangeState(str, Enum):
    RECEIVED = "received"
    FORWARDING = "forwarding"
    RELAYING = "relaying"
    RESPONDED = "responded"


_TRANSITIONS: Dict[ExchangeState, FrozenSet[ExchangeState]] = {
    ExchangeState.RECEIVED: frozenset({ExchangeState.FORWARDING, ExchangeState.RESPONDED}),
    ExchangeState.FORWARDING: frozenset({ExchangeState.RELAYING, ExchangeState.RESPONDED}),
    ExchangeState.RELAYING: frozenset({ExchangeState.RESPONDED}),
    ExchangeState.RESPONDED: frozenset(),
}


class InvalidTransition(RuntimeError):
    """Raised when a request tries to move to a state it may not enter."""


class ProxyExchange:
    """
    State holder for one inbound request.

    Attributes:
        method: Inbound HTTP method
        path: Inbound path including query string
        state: Current lifecycle state
        history: Every state visited, in order
    """

    def __init__(self, method: str, path: str):
        self.method = method
        self.path = path
        self.state = ExchangeState.RECEIVED
        self.history: List[ExchangeState] = [ExchangeState.RECEIVED]

    @property
    def is_finished(self) -> bool:
        return self.state is ExchangeState.RESPONDED

    def advance(self, target: ExchangeState) -> None:
        """
        Move to ``target``.

        Raises:
            InvalidTransition: If ``target`` is not reachable from the
                current state.
        """
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"{self.method} {self.path}: cannot move from "
                f"{self.state.value} to {target.value}"
            )

        logger.debug(
            f"{self.method} {self.path}: {self.state.value} -> {target.value}"
        )
        self.state = target
        self.history.append(target)
