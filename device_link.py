"""
device_link.py

Line-framed serial link to the door controller.

Inbound bytes are split on newlines and handed to the registered line
callbacks from a background reader thread. Outbound commands are written as a
single newline-terminated line; nothing is acknowledged by the device.
"""
import threading
from typing import Callable, List, Optional

# PySerial for the controller connection
import serial

from config import BAUDRATE, SERIAL_PORT, SERIAL_TIMEOUT

LINE_DELIMITER = b"\n"


class LinkError(Exception):
    """Base class for serial link failures."""


class LinkOpenError(LinkError):
    """The serial port could not be opened."""


class LinkWriteError(LinkError):
    """A command could not be written to the serial port."""


class LineFramer:
    """
    Split a byte stream into trimmed text lines.

    Bytes after the last delimiter stay buffered until the rest of the line
    arrives, so a partial line is never returned.
    """

    def __init__(self, delimiter: bytes = LINE_DELIMITER):
        self._delimiter = delimiter
        self._buffer = b""

    def feed(self, data: bytes) -> List[str]:
        self._buffer += data
        *complete, self._buffer = self._buffer.split(self._delimiter)
        return [raw.decode("utf-8", errors="ignore").strip() for raw in complete]

    @property
    def pending(self) -> bytes:
        return self._buffer


class DeviceLink:
    """Owns the serial port: framing on the way in, command lines on the way out."""

    def __init__(self, port: str = SERIAL_PORT, baudrate: int = BAUDRATE,
                 timeout: float = SERIAL_TIMEOUT):
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self._serial = None
        self._write_lock = threading.Lock()  # One writer at a time, lines must not interleave
        self._stop = threading.Event()
        self._reader: Optional[threading.Thread] = None
        self._line_callbacks: List[Callable[[str], None]] = []
        self._error_callbacks: List[Callable[[Exception], None]] = []

    def on_line(self, callback: Callable[[str], None]) -> None:
        self._line_callbacks.append(callback)

    def on_error(self, callback: Callable[[Exception], None]) -> None:
        self._error_callbacks.append(callback)

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def open(self) -> None:
        """
        Open the serial port.

        Raises:
            LinkOpenError: if the port does not exist or cannot be configured.
        """
        try:
            self._serial = serial.Serial(self.port, self.baudrate, timeout=self.timeout)
        except (serial.SerialException, ValueError) as e:
            raise LinkOpenError(f"{self.port}: {e}") from e
        print(f"📡  Serial port open on {self.port} @ {self.baudrate} baud")

    def close(self) -> None:
        self.stop()
        if self._serial is not None:
            self._serial.close()
            self._serial = None

    def send_line(self, command: str) -> None:
        """
        Write one command line to the device.

        Args:
            command (str): The command text, without the line delimiter.

        Raises:
            LinkWriteError: if the port is not open or the write fails.
        """
        if not self.is_open:
            raise LinkWriteError(f"cannot send {command!r}: serial port is not open")
        payload = command.encode("utf-8") + LINE_DELIMITER
        try:
            with self._write_lock:
                self._serial.write(payload)
        except (serial.SerialException, OSError) as e:
            raise LinkWriteError(f"cannot send {command!r}: {e}") from e

    def start(self) -> threading.Thread:
        """Run read_loop() in a daemon thread."""
        self._stop.clear()
        self._reader = threading.Thread(target=self.read_loop, name="serial-reader", daemon=True)
        self._reader.start()
        return self._reader

    def stop(self) -> None:
        self._stop.set()
        if self._reader is not None and self._reader is not threading.current_thread():
            self._reader.join(timeout=1.0)
        self._reader = None

    def read_loop(self) -> None:
        """
        Read from the serial port until stopped, delivering each complete line.

        A read failure is reported to the error callbacks and ends the loop.
        """
        framer = LineFramer()
        while not self._stop.is_set():
            try:
                # in_waiting is 0 when idle; read(1) then blocks for at most the timeout
                chunk = self._serial.read(self._serial.in_waiting or 1)
            except (serial.SerialException, OSError) as e:
                self._report_error(e)
                return
            if not chunk:
                continue
            for line in framer.feed(chunk):
                self._deliver(line)

    def _deliver(self, line: str) -> None:
        for callback in self._line_callbacks:
            try:
                callback(line)
            except Exception as e:
                print(f"[SERIAL-ERROR] Line handler failed: {e}")

    def _report_error(self, error: Exception) -> None:
        if not self._error_callbacks:
            print(f"[SERIAL-ERROR] {error}")
        for callback in self._error_callbacks:
            try:
                callback(error)
            except Exception as e:
                print(f"[SERIAL-ERROR] Error handler failed: {e}")
