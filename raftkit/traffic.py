"""A two-way traffic signal driven by a clock and push buttons.

The signal cycles NS red / EW green, EW yellow, both red, NS green,
NS yellow and back. Light states go out over UDP as single letters and any
datagram on a button port counts as a press.
"""

from __future__ import annotations

import argparse
import contextlib
import enum
import threading
import time
from dataclasses import dataclass

from raftkit.net import UdpListener, UdpStream

NS_OUT_PORT = 10000
NS_IN_PORT = 20000
EW_OUT_PORT = 30000
EW_IN_PORT = 40000
YELLOW_DURATION = 5
BUTTON_BONUS = 15


class SignalState(enum.Enum):
    """A light colour; the value is the letter sent on the wire."""

    RED = "R"
    YELLOW = "Y"
    GREEN = "G"


class Direction(enum.Enum):
    NS = "ns"
    EW = "ew"


@dataclass(frozen=True)
class Lights:
    """The letters shown in each direction."""

    ns: str
    ew: str


@dataclass
class _Signal:
    state: SignalState
    expires_green: int
    expires_yellow: int = YELLOW_DURATION


class SignalLogic:
    """The signal's state machine, sharing one clock between both directions."""

    def __init__(
        self,
        color_ns: SignalState = SignalState.RED,
        color_ew: SignalState = SignalState.GREEN,
        curr_clock: int = 0,
        ns_expire: int = 30,
        ew_expire: int = 40,
    ) -> None:
        self._ns = _Signal(color_ns, ns_expire)
        self._ew = _Signal(color_ew, ew_expire)
        self._clock = curr_clock

    @property
    def clock(self) -> int:
        return self._clock

    def button_pressed(self, direction: Direction) -> None:
        """A press while that direction is green brings its change closer."""
        signal = self._ns if direction is Direction.NS else self._ew
        if signal.state is SignalState.GREEN:
            self._clock += BUTTON_BONUS

    def set_ns(self, color: SignalState) -> None:
        """Change NS, except to green while EW is green or yellow."""
        if color is SignalState.GREEN and self._ew.state is not SignalState.RED:
            return
        self._ns.state = color

    def set_ew(self, color: SignalState) -> None:
        """Change EW, except to green while NS is green or yellow."""
        if color is SignalState.GREEN and self._ns.state is not SignalState.RED:
            return
        self._ew.state = color

    def _advance(self, signal: _Signal, setter, adv: int) -> None:
        if signal.state is SignalState.RED:
            setter(SignalState.GREEN)
        elif signal.state is SignalState.YELLOW:
            self._clock += adv
            if self._clock >= signal.expires_yellow:
                self._clock = 0
                setter(SignalState.RED)
        else:
            self._clock += adv
            if self._clock >= signal.expires_green:
                self._clock = 0
                setter(SignalState.YELLOW)

    def advance_clock(self, adv: int) -> Lights:
        """Move time on by ``adv`` ticks and return the lights shown."""
        self._advance(self._ns, self.set_ns, adv)
        self._advance(self._ew, self.set_ew, adv)
        return Lights(ns=self.ns, ew=self.ew)

    @property
    def ns(self) -> str:
        return self._ns.state.value

    @property
    def ew(self) -> str:
        return self._ew.state.value

    def __str__(self) -> str:
        return f"ns: {self.ns} ew: {self.ew}"


def _send(stream: UdpStream, letter: str) -> None:
    with contextlib.suppress(ConnectionRefusedError):
        stream.send(letter)


def _watch_button(listener: UdpListener, pressed: threading.Event) -> None:
    while True:
        try:
            data = listener.recv()
        except OSError:
            return
        if data:
            pressed.set()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Traffic signal controller.")
    parser.add_argument("--tick", type=float, default=1.0, help="Seconds per clock tick")
    args = parser.parse_args(argv)

    logic = SignalLogic()
    ns_pressed = threading.Event()
    ew_pressed = threading.Event()
    try:
        with contextlib.ExitStack() as stack:
            ns_out = stack.enter_context(UdpStream("localhost", NS_OUT_PORT))
            ew_out = stack.enter_context(UdpStream("localhost", EW_OUT_PORT))
            ns_in = stack.enter_context(UdpListener(NS_IN_PORT))
            ew_in = stack.enter_context(UdpListener(EW_IN_PORT))

            _send(ew_out, logic.ew)
            _send(ns_out, logic.ns)

            for listener, event in ((ns_in, ns_pressed), (ew_in, ew_pressed)):
                threading.Thread(
                    target=_watch_button, args=(listener, event), daemon=True
                ).start()

            while True:
                if ns_pressed.is_set():
                    logic.button_pressed(Direction.NS)
                    ns_pressed.clear()
                elif ew_pressed.is_set():
                    logic.button_pressed(Direction.EW)
                    ew_pressed.clear()
                lights = logic.advance_clock(1)
                _send(ew_out, lights.ew)
                _send(ns_out, lights.ns)
                time.sleep(args.tick)
    except KeyboardInterrupt:
        print("shutting down...")
    return 0