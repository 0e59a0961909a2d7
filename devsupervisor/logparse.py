"""
Classification of the PHP built-in web server's output.

The server prints one line per connection event and per served request,
usually prefixed with a bracketed timestamp:

    [Mon Jan  1 00:00:00 2024] 127.0.0.1:54321 Accepted
    [Mon Jan  1 00:00:00 2024] 127.0.0.1:54321 [200]: GET /index.html
    [Mon Jan  1 00:00:00 2024] 127.0.0.1:54321 Closing

Those lines are turned into structured events and logged; anything else
(startup banner, PHP warnings) is passed through verbatim.
"""

import codecs
import logging
import re
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

# Between INFO and WARNING, for server output that carries no structure.
NOTICE = 25
logging.addLevelName(NOTICE, "NOTICE")

LINE_GRAMMAR = re.compile(
    r"^(?P<ip>.+):(?P<port>\d{1,5}) "
    r"(?:(?P<action>Accepted|Closing)"
    r"|\[(?P<status>\d{3})\]: (?P<verb>\S+) (?P<path>.*))$",
    re.IGNORECASE,
)


class ConnectionAction(Enum):
    ACCEPTED = "Accepted"
    CLOSING = "Closing"


@dataclass(frozen=True)
class ConnectionEvent:
    ip: str
    port: int
    action: ConnectionAction


@dataclass(frozen=True)
class RequestEvent:
    ip: str
    port: int
    verb: str
    path: str
    status: int


@dataclass(frozen=True)
class RawEvent:
    text: str


LogEvent = ConnectionEvent | RequestEvent | RawEvent


def strip_timestamp(line: str) -> str:
    """Drop a leading ``[...] `` prefix, if any."""
    if line.startswith("["):
        end = line.find("] ")
        if end != -1:
            return line[end + 2:]
    return line


class LineSplitter:
    """Reassembles lines from output chunks of arbitrary size.

    A chunk may hold several lines or end in the middle of one; the partial
    tail is kept until the next chunk or ``flush()``.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk) -> list[str]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        data = self._pending + chunk
        *lines, self._pending = data.split("\n")
        return [line.rstrip("\r") for line in lines if line.strip()]

    def flush(self) -> list[str]:
        data = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        data = data.rstrip("\r")
        return [data] if data.strip() else []


class LogLineClassifier:
    """Turns server output lines into log events and writes them to the log."""

    def __init__(self, verbose: bool = False, log: logging.Logger | None = None):
        self.verbose = verbose
        self.log = log or logger

    def classify(self, line: str) -> LogEvent | None:
        """Classify one line. Returns None for connection events when not verbose."""
        text = strip_timestamp(line.rstrip("\r\n"))
        match = LINE_GRAMMAR.match(text)
        if match is None:
            return RawEvent(text)

        ip = match.group("ip")
        port = int(match.group("port"))
        action = match.group("action")
        if action:
            if not self.verbose:
                return None
            return ConnectionEvent(ip, port, ConnectionAction(action.capitalize()))

        return RequestEvent(
            ip=ip,
            port=port,
            verb=match.group("verb"),
            path=match.group("path"),
            status=int(match.group("status")),
        )

    def publish(self, event: LogEvent) -> None:
        if isinstance(event, ConnectionEvent):
            self.log.debug(f"{event.action.value} connection at {event.ip}:{event.port}")
        elif isinstance(event, RequestEvent):
            self.log.info(
                f"{event.verb} {event.path} -> {event.status}",
                extra={"ip": event.ip, "port": event.port},
            )
        else:
            self.log.log(NOTICE, event.text)

    def handle_chunk(self, chunk, splitter: LineSplitter) -> None:
        """Classify and log every complete line of an output chunk, in order."""
        self.handle_lines(splitter.feed(chunk))

    def handle_lines(self, lines: list[str]) -> None:
        for line in lines:
            try:
                event = self.classify(line)
                if event is not None:
                    self.publish(event)
            except Exception as e:
                logger.error(f"Error processing server output line {line!r}: {e}")
