"""Error taxonomy shared by the monitoring core."""
from __future__ import annotations


class SaldoError(RuntimeError):
    """Base class for every error raised by the saldo core."""


class SourceUnavailable(SaldoError):
    """The balance source could not be reached or answered with an HTTP error."""


class ParseError(SaldoError):
    """The balance page did not contain a balance and a card status."""


class PersistenceLoadError(SaldoError):
    """The snapshot could not be decoded; callers fall back to an empty store."""


class PersistenceWriteError(SaldoError):
    """Writing the snapshot failed; the next scheduled flush retries."""


class GatewaySendError(SaldoError):
    """The messaging gateway refused or failed to deliver a message."""
