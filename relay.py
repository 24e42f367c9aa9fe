"""
relay.py

Routing between the door controller, the app clients and Firestore.

- Device line        -> broadcast to every connected client, unchanged
- Client message     -> one command line to the device
- Firestore snapshot -> UNLOCK / LOCK to the device

The Relay keeps no state of its own beyond references to the three adapters,
so it can be driven with fakes in tests.
"""
from typing import Optional, Tuple

from client_hub import peer_name
from device_link import LinkWriteError
from state_watch import DOOR_CLOSED, DOOR_OPEN

PASSCODE_PREFIX = "PASSCODE:"
CMD_CLOSE = "CLOSE"
CMD_RESET = "RESET"
CMD_UNLOCK = "UNLOCK"
CMD_LOCK = "LOCK"

# Client message kinds
KIND_PASSCODE = "passcode"
KIND_CLOSE = "close"
KIND_RESET = "reset"
KIND_FORWARD = "forward"

DOOR_STATE_COMMANDS = {
    DOOR_OPEN: CMD_UNLOCK,
    DOOR_CLOSED: CMD_LOCK,
}


def classify_client_message(message: str) -> Tuple[str, str]:
    """
    Decide what to send to the device for a (trimmed) client message.

    Rules are checked in order; anything unrecognised is forwarded verbatim.

    Returns:
        tuple: (kind, command) where command is the line to send.
    """
    if message.startswith(PASSCODE_PREFIX):
        return KIND_PASSCODE, message
    if message == CMD_CLOSE:
        return KIND_CLOSE, CMD_CLOSE
    if message == CMD_RESET:
        return KIND_RESET, CMD_RESET
    return KIND_FORWARD, message


def door_state_command(value: str) -> Optional[str]:
    """Map a door state to its device command; None for unknown states."""
    if not isinstance(value, str):
        return None  # Maps, arrays and numbers are not door states
    return DOOR_STATE_COMMANDS.get(value)


class Relay:
    """Wires DeviceLink, ClientHub and StateWatch together."""

    def __init__(self, link, hub, watch):
        self.link = link
        self.hub = hub
        self.watch = watch

    def attach(self) -> None:
        """Register the Relay's handlers on all three adapters."""
        self.link.on_line(self.on_device_line)
        self.link.on_error(self.on_device_error)
        self.hub.on_connect(self.on_client_connect)
        self.hub.on_message(self.on_client_message)
        self.hub.on_disconnect(self.on_client_disconnect)
        self.hub.on_error(self.on_client_error)
        self.watch.on_change(self.on_door_state_change)
        self.watch.on_error(self.on_watch_error)

    # Device -> clients

    def on_device_line(self, line: str) -> None:
        print(f"[SERIAL] ⇐ From device: {line}")
        self.hub.broadcast(line)

    def on_device_error(self, error: Exception) -> None:
        print(f"[SERIAL-ERROR] Serial link failed: {error}")

    # Clients -> device

    def on_client_connect(self, connection) -> None:
        print(f"[WS] ⇒ App connected ({peer_name(connection)})")

    def on_client_message(self, connection, message: str) -> None:
        kind, command = classify_client_message(message)
        print(f"[RELAY] ⇒ To device ({kind}): {command}")
        self._send(command)

    def on_client_disconnect(self, connection) -> None:
        print(f"[WS] ⇐ App disconnected ({peer_name(connection)})")

    def on_client_error(self, connection, error: Exception) -> None:
        print(f"[WS-ERROR] {peer_name(connection)}: {error}")

    # Firestore -> device

    def on_door_state_change(self, event) -> None:
        command = door_state_command(event.value)
        if command is None:
            return  # Not a state we act on
        self._send(command)

    def on_watch_error(self, error: Exception) -> None:
        print(f"[FIRESTORE-ERROR] Error watching doorState: {error}")

    def _send(self, command: str) -> None:
        try:
            self.link.send_line(command)
        except LinkWriteError as e:
            # No ack protocol: the failure is only logged
            print(f"[RELAY-ERROR] Error writing {command} to serial: {e}")
