"""Exceptions raised by the hub for calls it cannot accept."""
from __future__ import annotations


class HubError(Exception):
    """Base class for hub invocation failures reported back to the caller."""


class ConnectionStateError(HubError):
    """The connection is not in a state that accepts the requested call."""

    def __init__(self, connection_id: str, state: str, action: str) -> None:
        super().__init__(f"connection {connection_id} is {state}; cannot {action}")
        self.connection_id = connection_id
        self.state = state
        self.action = action


class UnknownMethodError(HubError):
    def __init__(self, target: str) -> None:
        super().__init__(f"unknown hub method {target!r}")
        self.target = target


class InvocationError(HubError):
    """Malformed invocation: wrong argument count or a non-object frame."""


__all__ = ["HubError", "ConnectionStateError", "UnknownMethodError", "InvocationError"]
