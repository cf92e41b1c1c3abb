import os
import socket
import ssl
import threading

import pytest


DATA_DIR = os.path.join(os.path.dirname(__file__), "data")
CERT_FILE = os.path.join(DATA_DIR, "server.crt")
KEY_FILE = os.path.join(DATA_DIR, "server.key")


class FakeStratumServer:
    """
    Loopback TCP server that answers each connection according to `mode`:

    - "reply":   read one request line, send `reply`, close
    - "silent":  read one request line, then say nothing until stopped
    - "close":   read one request line, close without replying
    - "greet":   send `reply` straight after accepting, close

    With `tls=True` every connection is wrapped with a self-signed
    certificate from tests/data before the mode applies.
    """

    def __init__(self, mode: str = "reply", reply: bytes = b'{"id":1,"result":true,"error":null}\n',
                 tls: bool = False):
        self.mode = mode
        self.reply = reply
        self._tls = None
        if tls:
            self._tls = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            self._tls.load_cert_chain(CERT_FILE, KEY_FILE)
        self.requests = []
        self._stop = threading.Event()
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(8)
        self._sock.settimeout(0.1)
        self.port = self._sock.getsockname()[1]
        self._thread = threading.Thread(target=self._serve, daemon=True)

    @property
    def target(self) -> str:
        return f"127.0.0.1:{self.port}"

    def start(self):
        self._thread.start()
        return self

    def stop(self):
        self._stop.set()
        self._thread.join(timeout=5)
        self._sock.close()

    def _serve(self):
        while not self._stop.is_set():
            try:
                conn, _ = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            try:
                if self._tls is not None:
                    conn.settimeout(5)
                    conn = self._tls.wrap_socket(conn, server_side=True)
                with conn:
                    self._handle(conn)
            except OSError:
                conn.close()

    def _read_request(self, conn) -> bytes:
        conn.settimeout(5)
        buf = b""
        while b"\n" not in buf:
            chunk = conn.recv(4096)
            if not chunk:
                break
            buf += chunk
        return buf

    def _handle(self, conn):
        if self.mode == "greet":
            conn.sendall(self.reply)
            # Drain whatever the client sent so closing does not reset the connection
            conn.settimeout(2)
            conn.recv(4096)
            return

        self.requests.append(self._read_request(conn))
        if self.mode == "reply":
            conn.sendall(self.reply)
        elif self.mode == "silent":
            self._stop.wait()


@pytest.fixture
def stratum_server():
    servers = []

    def factory(mode="reply", **kwargs):
        server = FakeStratumServer(mode, **kwargs).start()
        servers.append(server)
        return server

    yield factory
    for server in servers:
        server.stop()


@pytest.fixture
def closed_port():
    """A loopback port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
