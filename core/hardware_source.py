import logging
import math
import queue
import threading
from typing import Callable, Optional, Protocol

import serial

from .clock import Clock
from .config import (
    SERIAL_BAUD_RATE,
    SERIAL_ERROR_PREFIX,
    SERIAL_READ_TIMEOUT_SECONDS,
    SERIAL_READING_PREFIX,
    SERIAL_REPLY_QUEUE_SIZE,
    SERIAL_REQUEST,
)
from .data_sources import DataSource
from .errors import SourceError
from .models import UNKNOWN_LOCATION, Reading

logger = logging.getLogger(__name__)


class Channel(Protocol):
    """Byte channel with newline-delimited replies (a serial port in production)."""

    def write(self, data: bytes) -> Optional[int]:
        ...

    def readline(self) -> bytes:
        ...

    def close(self) -> None:
        ...


ChannelFactory = Callable[[str, int, float], Channel]


def open_serial_channel(port: str, baudrate: int, timeout: float) -> Channel:
    """Open an 8N1 serial port; `port` may also be a pyserial URL such as loop://."""
    return serial.serial_for_url(
        port,
        baudrate=baudrate,
        bytesize=serial.EIGHTBITS,
        parity=serial.PARITY_NONE,
        stopbits=serial.STOPBITS_ONE,
        timeout=timeout,
    )


class HardwareSource(DataSource):
    """
    Temperature/humidity microcontroller (ESP32 + DHT22) on a serial line.

    Protocol: we send READ, the device answers READING:<temp>,<humidity> or
    ERROR:<message>. A background thread owns all reads from the channel and
    queues parsed readings; poll() sends the request and waits for the reply
    up to the read timeout. Malformed lines are logged and dropped, so a bad
    reply surfaces as a timeout rather than a garbage reading.
    """

    def __init__(
        self,
        source_id: str,
        port: str,
        location: str = UNKNOWN_LOCATION,
        baudrate: int = SERIAL_BAUD_RATE,
        read_timeout: float = SERIAL_READ_TIMEOUT_SECONDS,
        channel_factory: ChannelFactory = open_serial_channel,
        clock: Optional[Clock] = None,
    ):
        super().__init__(source_id, location, clock)
        self.port = port
        self.baudrate = baudrate
        self.read_timeout = read_timeout
        self._channel_factory = channel_factory
        self._channel: Optional[Channel] = None
        self._replies: "queue.Queue[Reading]" = queue.Queue(maxsize=SERIAL_REPLY_QUEUE_SIZE)
        self._stop = threading.Event()
        self._reader: Optional[threading.Thread] = None
        logger.debug("Created hardware source %s on port %s (%s)", source_id, port, location)

    def _open(self) -> None:
        logger.info("Opening serial port %s for %s", self.port, self.source_id, extra={"source_id": self.source_id})
        try:
            self._channel = self._channel_factory(self.port, self.baudrate, self.read_timeout)
        except Exception as exc:
            raise SourceError(f"Failed to open serial port {self.port}: {exc}") from exc

        self._stop.clear()
        self._reader = threading.Thread(
            target=self._reader_loop,
            name=f"serial-reader-{self.source_id}",
            daemon=True,
        )
        self._reader.start()

    def _read(self) -> Reading:
        channel = self._channel
        if channel is None:
            raise SourceError(f"Serial port {self.port} is not open")
        self._discard_stale_replies()

        logger.debug("Requesting reading from %s", self.source_id)
        try:
            channel.write(SERIAL_REQUEST)
        except Exception as exc:
            raise SourceError(f"Failed to write to serial port {self.port}: {exc}") from exc

        try:
            reading = self._replies.get(timeout=self.read_timeout)
        except queue.Empty:
            raise SourceError("timeout") from None

        logger.debug("Received reading from %s: %.1f°C, %.1f%%", self.source_id, reading.temperature, reading.humidity)
        return reading

    def _release(self) -> None:
        self._stop.set()
        channel, self._channel = self._channel, None
        try:
            if channel is not None:
                channel.close()
        finally:
            if self._reader is not None:
                self._reader.join(timeout=self.read_timeout + 1.0)
                self._reader = None

    # -------------------------------------------------------------------------
    # Reply handling
    # -------------------------------------------------------------------------
    def _reader_loop(self) -> None:
        while not self._stop.is_set():
            channel = self._channel
            if channel is None:
                break
            try:
                raw = channel.readline()
            except Exception as exc:
                if self._stop.is_set():
                    break
                logger.error("Serial read failed on %s: %s", self.port, exc, extra={"source_id": self.source_id})
                self._stop.wait(self.read_timeout)
                continue
            if raw:
                self.handle_line(raw)

    def handle_line(self, raw: bytes) -> None:
        """Parse one line from the device and queue it if it is a valid reading."""
        message = raw.decode("utf-8", errors="replace").strip()
        if not message:
            return

        if message.startswith(SERIAL_READING_PREFIX):
            reading = self._parse_reading(message[len(SERIAL_READING_PREFIX):])
            if reading is not None:
                self._offer(reading)
        elif message.startswith(SERIAL_ERROR_PREFIX):
            logger.error(
                "Sensor error from %s: %s",
                self.source_id,
                message[len(SERIAL_ERROR_PREFIX):].strip(),
                extra={"source_id": self.source_id},
            )
        else:
            logger.debug("Unrecognized message from %s: %s", self.source_id, message)

    def _parse_reading(self, payload: str) -> Optional[Reading]:
        parts = payload.split(",")
        if len(parts) != 2:
            logger.error("Invalid data format from %s: %r", self.source_id, payload, extra={"source_id": self.source_id})
            return None
        try:
            temperature = float(parts[0].strip())
            humidity = float(parts[1].strip())
        except ValueError:
            logger.error("Invalid number format from %s: %r", self.source_id, payload, extra={"source_id": self.source_id})
            return None
        # DHT22 read failures print as nan over the wire
        if not (math.isfinite(temperature) and math.isfinite(humidity)):
            logger.error("Non-finite values from %s: %r", self.source_id, payload, extra={"source_id": self.source_id})
            return None
        return self._make_reading(temperature, humidity)

    def _offer(self, reading: Reading) -> None:
        try:
            self._replies.put_nowait(reading)
        except queue.Full:
            # Keep the newest reply
            self._discard_stale_replies()
            self._replies.put_nowait(reading)

    def _discard_stale_replies(self) -> None:
        while True:
            try:
                self._replies.get_nowait()
            except queue.Empty:
                return
