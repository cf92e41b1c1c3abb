#!/usr/bin/env python3
"""
Stratum Ping

Measures round-trip latency to a mining pool stratum server the way ping
measures ICMP latency: each attempt opens a fresh TCP (or TLS) connection,
sends one stratum handshake request and times how long it takes for the
first line of the reply to arrive.

Features:
  • Two request shapes:
    - stratum1: eth_submitLogin with your login/password (legacy Ethereum pools)
    - stratum2: mining.subscribe (EthereumStratum/1.0.0, default)
  • IPv4 (default) or IPv6 only (-6), no fallback between families
  • TLS connections (-tls), certificate verification is always skipped
  • Batch mode (-i): one host:port per line, every line is probed twice,
    first over plain TCP and then over TLS
  • ping-style min/avg/max and packet loss summary

Usage:
    # Ping a pool with mining.subscribe (5 attempts)
    python3 stratum_ping.py eu1.ethermine.org:4444

    # Legacy eth_submitLogin handshake, 10 attempts, over TLS
    python3 stratum_ping.py -t stratum1 -c 10 -tls eu1.ethermine.org:5555

    # IPv6 only
    python3 stratum_ping.py -6 eth.2miners.com:2020

    # Probe every pool listed in a file (plain TCP and TLS for each line)
    python3 stratum_ping.py -i pools.txt

Requirements:
  • Python 3.8+
  • No external dependencies (uses only standard library)

Version: 1.0.0
"""

import argparse
import dataclasses
import enum
import json
import re
import socket
import ssl
import sys
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Optional, Sequence

__version__ = "1.0.0"

# Defaults for the command line
DEFAULT_LOGIN = "0x63a14c53f676f34847b5e6179c4f5f5a07f0b1ed"
DEFAULT_PASSWORD = "x"
DEFAULT_COUNT = 5
DEFAULT_PROTOCOL = "stratum2"
MAX_COUNT = 20000

# Network deadlines, in seconds. Each one bounds a single blocking step of
# one attempt; exceeding it fails that attempt only.
CONNECT_TIMEOUT = 10
WRITE_TIMEOUT = 10
READ_TIMEOUT = 10

# Fixed pause after every attempt, the last one included
PING_INTERVAL = 1.0

# A reply line longer than this counts as received once the buffer is full
READ_BUFFER_SIZE = 1024

# Client identification sent with mining.subscribe
CLIENT_AGENT = "stratum-ping/1.0.0"
STRATUM_VERSION = "EthereumStratum/1.0.0"

# TLS variants run for every line of a batch file, in order. The -tls flag
# is not consulted in batch mode.
BATCH_PLAN = (False, True)


class StratumPingError(Exception):
    """Base class for every error reported by stratum-ping."""


class ValidationError(StratumPingError):
    """Bad command line input, the session is never started."""


class EmptyTarget(ValidationError):
    def __init__(self):
        super().__init__("Stratum server cannot be empty")


class MalformedTarget(ValidationError):
    def __init__(self):
        super().__init__("Invalid host/port specified")


class InvalidCount(ValidationError):
    def __init__(self):
        super().__init__("Invalid count specified")


class InvalidPort(ValidationError):
    def __init__(self):
        super().__init__("Invalid port specified")


class InvalidProtocol(ValidationError):
    def __init__(self):
        super().__init__("Invalid stratum type specified")


class ResolutionError(StratumPingError):
    """Host name lookup failed, no attempts are made."""


class AttemptError(StratumPingError):
    """A single ping attempt failed. The attempt loop carries on."""


class ConnectError(AttemptError):
    pass


class TLSError(AttemptError):
    pass


class WriteTimeoutError(AttemptError):
    pass


class ReadTimeoutError(AttemptError):
    pass


class Protocol(enum.Enum):
    LEGACY = "stratum1"
    MODERN = "stratum2"


@dataclass(frozen=True)
class ProbeSession:
    """
    Everything needed to ping one target.

    Built by parse_session() from validated input; resolve() returns a copy
    with resolved_address filled in. Never modified afterwards.
    """
    host: str
    port: int
    login: str
    password: str
    count: int
    ipv6: bool
    protocol: Protocol
    use_tls: bool
    resolved_address: Optional[str] = None

    @property
    def family(self) -> int:
        return socket.AF_INET6 if self.ipv6 else socket.AF_INET

    @property
    def sockaddr(self) -> tuple:
        if self.resolved_address is None:
            raise ValueError(f"{self.host} has not been resolved")
        if self.ipv6:
            return (self.resolved_address, self.port, 0, 0)
        return (self.resolved_address, self.port)


@dataclass(frozen=True)
class ProbeAttempt:
    """Outcome of one attempt: elapsed seconds on success, the error otherwise."""
    seq: int
    elapsed: Optional[float] = None
    error: Optional[AttemptError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ProbeSummary:
    """Running min/avg/max and loss statistics for one session."""
    transmitted: int = 0
    received: int = 0
    min_time: float = 3600.0
    max_time: float = 0.0
    total_rtt: float = 0.0
    elapsed: float = 0.0

    def add(self, attempt: ProbeAttempt) -> None:
        self.transmitted += 1
        if not attempt.ok:
            return
        self.received += 1
        self.total_rtt += attempt.elapsed
        if attempt.elapsed > self.max_time:
            self.max_time = attempt.elapsed
        if attempt.elapsed < self.min_time:
            self.min_time = attempt.elapsed

    @property
    def avg_time(self) -> Optional[float]:
        if self.received == 0:
            return None
        return self.total_rtt / self.received

    @property
    def loss_percent(self) -> int:
        # Truncates the percentage, not the ratio: 1 of 3 received is 67% loss
        if self.transmitted == 0:
            return 100
        return 100 - int(self.received / self.transmitted * 100.0)

    def format_lines(self, host: str) -> List[str]:
        lines = [f"--- {host} ping statistics ---"]
        if self.received > 0:
            lines.append("min/avg/max = {}, {}, {}".format(
                format_duration(self.min_time),
                format_duration(self.avg_time),
                format_duration(self.max_time),
            ))
        lines.append(
            f"{self.transmitted} packets transmitted, {self.received} received, "
            f"{self.loss_percent}% packet loss, time {format_duration(self.elapsed)}"
        )
        return lines


def _trim_fraction(value: float, digits: int) -> str:
    text = f"{value:.{digits}f}"
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return text


def format_duration(seconds: float) -> str:
    """
    Format a duration the way Go prints time.Duration values.

    Examples: 0s, 350ns, 812.5µs, 45.123456ms, 1.234567891s, 1m5s, 2h0m1.5s
    """
    ns = int(round(seconds * 1e9))
    if ns == 0:
        return "0s"
    if ns < 1000:
        return f"{ns}ns"
    if ns < 1000000:
        return _trim_fraction(ns / 1e3, 3) + "µs"
    if ns < 1000000000:
        return _trim_fraction(ns / 1e6, 6) + "ms"

    hours, rest = divmod(ns, 3600 * 10**9)
    minutes, rest = divmod(rest, 60 * 10**9)
    secs = _trim_fraction(rest / 1e9, 9) + "s"
    if hours:
        return f"{hours}h{minutes}m{secs}"
    if minutes:
        return f"{minutes}m{secs}"
    return secs


def parse_session(target: str, login: str = DEFAULT_LOGIN, password: str = DEFAULT_PASSWORD,
                  count: int = DEFAULT_COUNT, ipv6: bool = False,
                  protocol: str = DEFAULT_PROTOCOL, use_tls: bool = False) -> ProbeSession:
    """
    Validate command line input and build a ProbeSession.

    Checks run in a fixed order and stop at the first failure: empty target,
    host:port shape, count range, port range, stratum type. Nothing touches
    the network here.
    """
    if not target:
        raise EmptyTarget()

    # A plain split, so unbracketed and bracketed IPv6 literals are both rejected
    parts = target.split(':')
    if len(parts) != 2:
        raise MalformedTarget()
    host, port_str = parts

    if count <= 0 or count > MAX_COUNT:
        raise InvalidCount()

    match = re.fullmatch(r'([+-]?)0*([0-9]+)', port_str)
    if match is None:
        raise InvalidPort()
    sign, digits = match.groups()
    # More than five significant digits is out of range whatever the value
    if len(digits) > 5:
        raise InvalidPort()
    port = int(sign + digits)
    if port <= 0 or port >= 65536:
        raise InvalidPort()

    try:
        proto = Protocol(protocol)
    except ValueError:
        raise InvalidProtocol() from None

    return ProbeSession(
        host=host,
        port=port,
        login=login,
        password=password,
        count=count,
        ipv6=ipv6,
        protocol=proto,
        use_tls=use_tls,
    )


def resolve(session: ProbeSession) -> ProbeSession:
    """
    Look up the session host within its address family only.
    Returns a copy of the session with resolved_address set.
    """
    try:
        infos = socket.getaddrinfo(session.host, None, session.family, socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError) as e:
        raise ResolutionError(f"Failed to resolve host name: {e}") from e

    if not infos:
        raise ResolutionError(f"Failed to resolve host name: no address for {session.host}")

    address = infos[0][4][0]
    return dataclasses.replace(session, resolved_address=address)


def build_request(session: ProbeSession) -> bytes:
    """Return the newline terminated JSON handshake for the session protocol."""
    if session.protocol is Protocol.LEGACY:
        request = {
            "id": 1,
            "jsonrpc": "2.0",
            "method": "eth_submitLogin",
            "params": [session.login, session.password],
        }
    else:
        request = {
            "id": 1,
            "method": "mining.subscribe",
            "params": [CLIENT_AGENT, STRATUM_VERSION],
        }
    return (json.dumps(request, separators=(',', ':'), sort_keys=True) + "\n").encode('utf-8')


def _tls_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def open_connection(session: ProbeSession, timeout: float = CONNECT_TIMEOUT) -> socket.socket:
    """
    Connect to the resolved address, completing the TLS handshake when the
    session asks for TLS. Raises ConnectError or TLSError.
    """
    try:
        sock = socket.socket(session.family, socket.SOCK_STREAM)
    except OSError as e:
        raise ConnectError(f"Network error: {e}") from e

    sock.settimeout(timeout)
    try:
        if session.use_tls:
            # Dialing an IP address, so no SNI and no certificate checks
            sock = _tls_context().wrap_socket(sock, server_hostname=None)
        sock.connect(session.sockaddr)
    except socket.timeout as e:
        sock.close()
        raise ConnectError("Connection timeout") from e
    except ssl.SSLError as e:
        sock.close()
        raise TLSError(f"SSL error: {e}") from e
    except ConnectionRefusedError as e:
        sock.close()
        raise ConnectError("Connection refused") from e
    except OSError as e:
        sock.close()
        raise ConnectError(f"Network error: {e}") from e
    return sock


def read_line(sock: socket.socket, timeout: float = READ_TIMEOUT,
              limit: int = READ_BUFFER_SIZE) -> bytes:
    """
    Read up to the first newline before an absolute deadline.

    Returns early with what is buffered once `limit` bytes arrived without a
    newline, or when the server closes the connection after sending
    something. Raises socket.timeout when the deadline passes and
    AttemptError when the server closes without sending a byte.
    """
    deadline = time.monotonic() + timeout
    buf = b""
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise socket.timeout("timed out")
        sock.settimeout(remaining)
        chunk = sock.recv(limit - len(buf))
        if not chunk:
            if buf:
                return buf
            raise AttemptError("Connection closed by server")
        buf += chunk
        pos = buf.find(b"\n")
        if pos >= 0:
            return buf[:pos].rstrip(b"\r")
        if len(buf) >= limit:
            return buf


def ping_once(session: ProbeSession, connect_timeout: float = CONNECT_TIMEOUT,
              write_timeout: float = WRITE_TIMEOUT, read_timeout: float = READ_TIMEOUT) -> float:
    """
    One connect, send, receive cycle. Returns the seconds between sending
    the request and the first reply line. The connection is always closed.
    """
    request = build_request(session)
    with open_connection(session, connect_timeout) as sock:
        sock.settimeout(write_timeout)
        start_time = time.perf_counter()
        try:
            sock.sendall(request)
        except socket.timeout as e:
            raise WriteTimeoutError("Write timeout") from e
        except ssl.SSLError as e:
            raise TLSError(f"SSL error: {e}") from e
        except OSError as e:
            raise AttemptError(f"Network error: {e}") from e

        try:
            read_line(sock, read_timeout)
        except socket.timeout as e:
            raise ReadTimeoutError("Read timeout") from e
        except ssl.SSLError as e:
            raise TLSError(f"SSL error: {e}") from e
        except OSError as e:
            raise AttemptError(f"Network error: {e}") from e

        return time.perf_counter() - start_time


def iter_attempts(session: ProbeSession, interval: float = PING_INTERVAL,
                  sleep: Callable[[float], None] = time.sleep, **timeouts) -> Iterator[ProbeAttempt]:
    """
    Yield one ProbeAttempt per ping, session.count times.

    Each attempt is yielded as soon as it completes; the pause follows every
    attempt, including the last one.
    """
    for seq in range(session.count):
        try:
            elapsed = ping_once(session, **timeouts)
        except AttemptError as e:
            yield ProbeAttempt(seq=seq, error=e)
        else:
            yield ProbeAttempt(seq=seq, elapsed=elapsed)
        sleep(interval)


def format_banner(session: ProbeSession) -> str:
    tls = " TLS" if session.use_tls else ""
    creds = ""
    if session.protocol is Protocol.LEGACY:
        creds = f" with credentials: {session.login}:{session.password}"
    return f"PING stratum {session.host} ({session.resolved_address}){tls} port {session.port}{creds}"


def format_attempt(session: ProbeSession, attempt: ProbeAttempt) -> str:
    prefix = f"{session.host} ({session.resolved_address}): seq={attempt.seq}"
    if attempt.ok:
        return f"{prefix}, time={format_duration(attempt.elapsed)}"
    return f"{prefix}, {attempt.error}"


def run_session(session: ProbeSession, interval: float = PING_INTERVAL, **timeouts) -> ProbeSummary:
    """Ping a resolved session, printing each attempt as it happens, then the summary."""
    print(format_banner(session), flush=True)

    summary = ProbeSummary()
    start_time = time.monotonic()
    for attempt in iter_attempts(session, interval=interval, **timeouts):
        print(format_attempt(session, attempt), flush=True)
        summary.add(attempt)
    summary.elapsed = time.monotonic() - start_time

    for line in summary.format_lines(session.host):
        print(line)
    print("\n")
    return summary


def stratum_ping(target: str, login: str = DEFAULT_LOGIN, password: str = DEFAULT_PASSWORD,
                 count: int = DEFAULT_COUNT, ipv6: bool = False, protocol: str = DEFAULT_PROTOCOL,
                 use_tls: bool = False, interval: float = PING_INTERVAL,
                 **timeouts) -> Optional[ProbeSummary]:
    """
    Validate, resolve and ping one target.

    Raises ValidationError for bad input. A resolution failure is printed and
    None is returned; callers move on to the next target.
    """
    session = parse_session(target, login, password, count, ipv6, protocol, use_tls)
    try:
        session = resolve(session)
    except ResolutionError as e:
        print(f"{e}\n")
        return None
    return run_session(session, interval=interval, **timeouts)


def read_targets(path: str) -> List[str]:
    """
    Read batch targets, one per line, surrounding whitespace trimmed.

    Blank lines are kept. A trailing newline yields a final empty target,
    which fails validation and ends the batch.
    """
    with open(path, 'r', encoding='utf-8', errors='surrogateescape') as f:
        content = f.read()
    return [line.strip() for line in content.split('\n')]


def run_batch(targets: Iterable[str], login: str = DEFAULT_LOGIN, password: str = DEFAULT_PASSWORD,
              count: int = DEFAULT_COUNT, ipv6: bool = False, protocol: str = DEFAULT_PROTOCOL,
              plan: Sequence[bool] = BATCH_PLAN, interval: float = PING_INTERVAL,
              **timeouts) -> List[ProbeSummary]:
    """
    Ping every batch target once per TLS variant in `plan`.

    Targets are handled strictly one after another, in order. The first
    validation error is printed and stops the batch.
    """
    summaries = []
    for target in targets:
        for use_tls in plan:
            try:
                summary = stratum_ping(target, login, password, count, ipv6, protocol,
                                       use_tls, interval=interval, **timeouts)
            except ValidationError as e:
                print(f"{e}\n\n\n")
                return summaries
            if summary is not None:
                summaries.append(summary)
    return summaries


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='stratum-ping',
        description='Measure stratum mining pool latency with a protocol handshake',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Ping a pool (mining.subscribe, 5 attempts):
    stratum-ping eu1.ethermine.org:4444

  Legacy eth_submitLogin handshake with your wallet:
    stratum-ping -t stratum1 -u 0xYourWallet eu1.ethermine.org:4444

  Ping over TLS, 20 attempts:
    stratum-ping -tls -c 20 eu1.ethermine.org:5555

  Batch mode (each line is pinged over plain TCP, then TLS):
    stratum-ping -i pools.txt
        """
    )

    parser.add_argument('target', nargs='?', default='',
                        help='Stratum server as host:port (ignored with -i)')
    parser.add_argument('-u', '--login', default=DEFAULT_LOGIN,
                        help='Login, sent with stratum1 only (default: sample wallet)')
    parser.add_argument('-p', '--password', default=DEFAULT_PASSWORD,
                        help=f'Password, sent with stratum1 only (default: {DEFAULT_PASSWORD})')
    parser.add_argument('-c', '--count', type=int, default=DEFAULT_COUNT,
                        help=f'Stop after <count> attempts, 1-{MAX_COUNT} (default: {DEFAULT_COUNT})')
    parser.add_argument('-6', '--ipv6', dest='ipv6', action='store_true',
                        help='Resolve and connect over IPv6 only')
    parser.add_argument('-t', '--type', dest='protocol', default=DEFAULT_PROTOCOL,
                        help=f'Stratum type: stratum1, stratum2 (default: {DEFAULT_PROTOCOL})')
    parser.add_argument('-tls', '--tls', dest='tls', action='store_true',
                        help='Use TLS. WARNING: the server certificate is never verified')
    parser.add_argument('-i', '--input', dest='input_file', default='',
                        help='Read host:port targets from a file, one per line')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def main(argv: Optional[Sequence[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if not args.input_file:
            try:
                stratum_ping(args.target, args.login, args.password, args.count,
                             args.ipv6, args.protocol, args.tls)
            except ValidationError as e:
                print(f"{e}\n\n\n")
            return

        try:
            targets = read_targets(args.input_file)
        except OSError as e:
            print(f"Error: cannot read {args.input_file}: {e}", file=sys.stderr)
            sys.exit(1)
        run_batch(targets, args.login, args.password, args.count, args.ipv6, args.protocol)
    except KeyboardInterrupt:
        print("\n\nExiting...")
        sys.exit(0)


if __name__ == "__main__":
    main()
