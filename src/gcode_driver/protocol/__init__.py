"""
Protocol package - The command/response engine.

This package provides:
- CommandRegistry: Command templates and response patterns per subject and kind
- ResponsePattern: Compiled reply pattern with an optional Value capture
- ProtocolSession: The single-exchange state machine
"""

from .matcher import NO_MATCH, MatchResult, ResponsePattern, match
from .registry import (
    GLOBAL,
    CommandKind,
    CommandRegistry,
    CommandTemplate,
    Subject,
    fill_template,
)
from .session import ExchangeResult, PendingExchange, ProtocolSession, SessionState

__all__ = [
    "NO_MATCH",
    "MatchResult",
    "ResponsePattern",
    "match",
    "GLOBAL",
    "CommandKind",
    "CommandRegistry",
    "CommandTemplate",
    "Subject",
    "fill_template",
    "ExchangeResult",
    "PendingExchange",
    "ProtocolSession",
    "SessionState",
]
