# Overview: Card terminal contract (connect / pay / disconnect) and the charge session guard.

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Protocol


class TerminalError(Exception):
    """Terminal connect or payment failure. The allocation attempt is aborted; the operator retries."""
    kind = "integration"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class TerminalBusy(TerminalError):
    """A terminal session is already in flight for this sale."""


@dataclass(frozen=True)
class TerminalResult:
    success: bool
    message: str = ""


class CardTerminal(Protocol):
    def is_manual_mode(self) -> bool:
        ...

    def connect(self, device_name: str) -> bool:
        ...

    def process_payment(self, amount_cents: int) -> TerminalResult:
        ...

    def disconnect(self) -> None:
        ...


class ManualTerminal:
    """
    Stand-in for stores without an integrated terminal.

    The cashier keys the amount into a standalone device; the system only
    records the tender, so connect/pay/disconnect are never reached.
    """

    def is_manual_mode(self) -> bool:
        return True

    def connect(self, device_name: str) -> bool:
        return True

    def process_payment(self, amount_cents: int) -> TerminalResult:
        return TerminalResult(success=True, message="Manual mode")

    def disconnect(self) -> None:
        return None


TERMINAL_MODES = {
    "manual": ManualTerminal,
}


def build_terminal(mode: str) -> CardTerminal:
    try:
        return TERMINAL_MODES[mode]()
    except KeyError:
        raise ValueError(f"Unknown TERMINAL_MODE: {mode}. Must be one of {sorted(TERMINAL_MODES)}")


class TerminalGateway:
    """
    Runs one charge at a time against a terminal.

    Overlapping sessions are refused rather than queued: the terminal call
    may block for as long as the customer takes at the keypad, and a second
    charge for the same sale must wait for the operator.
    """

    def __init__(self, terminal: CardTerminal, device_name: str = "Ingenico"):
        self.terminal = terminal
        self.device_name = device_name
        self._busy = threading.Lock()

    def charge(self, amount_cents: int) -> TerminalResult:
        """
        connect -> process_payment -> disconnect, skipped in manual mode.

        Raises:
            TerminalBusy: another charge is in flight
            TerminalError: connect failed or the payment was declined
        """
        if amount_cents <= 0:
            return TerminalResult(success=True, message="Nothing to charge")

        if not self._busy.acquire(blocking=False):
            raise TerminalBusy("Terminal is busy with another payment")

        try:
            if self.terminal.is_manual_mode():
                return TerminalResult(success=True, message="Manual mode")

            if not self.terminal.connect(self.device_name):
                raise TerminalError(
                    f"Could not connect to terminal {self.device_name}",
                    details={"device_name": self.device_name},
                )
            try:
                result = self.terminal.process_payment(amount_cents)
            finally:
                self.terminal.disconnect()

            if not result.success:
                raise TerminalError(
                    result.message or "Terminal declined the payment",
                    details={"amount_cents": amount_cents},
                )
            return result
        finally:
            self._busy.release()
