#!/usr/bin/env python3
import argparse
import json
import socket
import sys

from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from datetime import datetime, timezone

from OpenSSL import crypto

from server_certs import make_server_context

BIND_HOST = "0.0.0.0"
BACKLOG = 5
BUFFER_SIZE = 256
READ_MAX = BUFFER_SIZE - 1  # one byte kept free so the buffer always reads as terminated text

ACK_MESSAGE = b"From server: I got your message!"

# lifecycle states
INIT = "INIT"
BOUND = "BOUND"
LISTENING = "LISTENING"
ACCEPTED = "ACCEPTED"
RECEIVED = "RECEIVED"
SENT = "SENT"
CLOSED = "CLOSED"
ERROR = "ERROR"

DEFAULT_CONFIG: Dict[str, Any] = {
    "tls": False,
    "certs_dir": "certs",
    "log_file": None,
}


# ---- errors ----
class ResponderError(Exception):
    """A fatal failure of one lifecycle phase. Never retried."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(operation)

    def __str__(self) -> str:
        if self.cause is None:
            return self.operation
        text = getattr(self.cause, "strerror", None) or str(self.cause)
        return f"{self.operation}: {text}"


class UsageError(ResponderError):
    pass


class ResourceCreationError(ResponderError):
    pass


class BindError(ResponderError):
    pass


class AcceptError(ResponderError):
    pass


class ReadError(ResponderError):
    pass


class WriteError(ResponderError):
    pass


# ---- event log ----
def _now_iso():
    return datetime.now(timezone.utc).isoformat()

def log_event(log_file: Optional[str], entry: Dict[str, Any]) -> None:
    """Append one JSON line to the event log, if one is configured."""
    if not log_file:
        return
    try:
        entry = dict(entry)
        entry["ts"] = _now_iso()
        with open(log_file, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, ensure_ascii=False) + "\n")
    except OSError as e:
        print(f"[LOG] Failed to write {log_file}: {e}", file=sys.stderr)


# ---- config ----
def load_config(path: Optional[str]) -> Dict[str, Any]:
    cfg = dict(DEFAULT_CONFIG)
    if not path:
        return cfg
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("top-level value must be an object")
        cfg.update({k: v for k, v in data.items() if k in DEFAULT_CONFIG})
    except FileNotFoundError:
        print(f"[CONFIG] {path} not found; using defaults.")
    except (OSError, ValueError) as e:
        print(f"[CONFIG] Failed to load {path}: {e}. Using defaults.")
    return cfg


# ------------- Connection handler -------------
class ConnectionHandler:
    """Runs the listen / accept / read / reply / close lifecycle exactly once.

    Every phase either moves the handler one state forward or raises a
    ResponderError after switching to ERROR. There is no way back to accept.
    """

    def __init__(self, tls: bool = False, certs_dir: str = "certs",
                 log_file: Optional[str] = None):
        self.tls = tls
        self.certs_dir = certs_dir
        self.log_file = log_file
        self.state = INIT
        self.port: Optional[int] = None
        self.listener: Optional[socket.socket] = None
        self.conn: Optional[socket.socket] = None
        self.peer: Optional[Tuple[str, int]] = None
        self._tls_context = None

    def _fail(self, error: ResponderError) -> ResponderError:
        self.state = ERROR
        log_event(self.log_file, {
            "event": "error",
            "port": self.port,
            "peer": _fmt_peer(self.peer),
            "operation": error.operation,
            "error": str(error),
        })
        return error

    def _expect(self, state: str, operation: str) -> None:
        if self.state != state:
            raise RuntimeError(f"{operation} called in state {self.state}, expected {state}")

    def open_listener(self, port: int) -> socket.socket:
        self._expect(INIT, "open_listener")
        self.port = port
        try:
            listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as e:
            raise self._fail(ResourceCreationError("ERROR opening socket", e))

        try:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((BIND_HOST, port))
        except OSError as e:
            listener.close()
            raise self._fail(BindError("ERROR on binding", e))
        self.listener = listener
        self.port = listener.getsockname()[1]
        self.state = BOUND

        try:
            listener.listen(BACKLOG)
        except OSError as e:
            raise self._fail(BindError("ERROR on listen", e))

        if self.tls:
            try:
                self._tls_context = make_server_context(self.certs_dir)
            except (OSError, crypto.Error) as e:
                raise self._fail(ResourceCreationError("ERROR preparing TLS context", e))
        self.state = LISTENING
        print(f"[SERVER] Listening on {BIND_HOST}:{self.port}", flush=True)
        return listener

    def accept_connection(self) -> socket.socket:
        self._expect(LISTENING, "accept_connection")
        try:
            conn, addr = self.listener.accept()
        except OSError as e:
            raise self._fail(AcceptError("ERROR on accept", e))
        self.peer = addr

        if self.tls:
            try:
                conn = self._tls_context.wrap_socket(conn, server_side=True)
            except OSError as e:
                conn.close()
                raise self._fail(AcceptError("ERROR on TLS handshake", e))

        self.conn = conn
        self.state = ACCEPTED
        print(f"[SERVER] Connected by {_fmt_peer(addr)}", flush=True)
        return conn

    def receive_message(self) -> Tuple[int, bytes]:
        """One read of at most READ_MAX bytes.

        Data arriving after this single read is never looked at; a message
        split across segments is truncated to what the first read returned.
        """
        self._expect(ACCEPTED, "receive_message")
        buffer = bytearray(BUFFER_SIZE)
        try:
            n = self.conn.recv_into(buffer, READ_MAX)
        except OSError as e:
            raise self._fail(ReadError("ERROR reading from socket", e))
        data = bytes(buffer[:n])
        self.state = RECEIVED

        _show_message(data)
        log_event(self.log_file, {
            "event": "received",
            "port": self.port,
            "peer": _fmt_peer(self.peer),
            "bytes": n,
        })
        return n, data

    def send_acknowledgment(self) -> int:
        # a short write is returned as-is, not retried
        self._expect(RECEIVED, "send_acknowledgment")
        try:
            n = self.conn.send(ACK_MESSAGE)
        except OSError as e:
            raise self._fail(WriteError("ERROR writing to socket", e))
        self.state = SENT
        log_event(self.log_file, {
            "event": "sent",
            "port": self.port,
            "peer": _fmt_peer(self.peer),
            "bytes": n,
        })
        return n

    def close(self) -> None:
        for sock in (self.conn, self.listener):
            if sock is not None:
                sock.close()
        if self.state == SENT:
            self.state = CLOSED
            log_event(self.log_file, {
                "event": "closed",
                "port": self.port,
                "peer": _fmt_peer(self.peer),
            })

    def run(self, port: int) -> int:
        """Whole lifecycle; returns the number of acknowledgment bytes written."""
        try:
            self.open_listener(port)
            self.accept_connection()
            self.receive_message()
            written = self.send_acknowledgment()
        finally:
            self.close()
        return written


def _show_message(data: bytes) -> None:
    # raw bytes, the way they came off the wire
    line = b"Here is the message: " + data + b"\n"
    out = getattr(sys.stdout, "buffer", None)
    if out is None:
        print(line[:-1].decode("utf-8", errors="replace"), flush=True)
        return
    sys.stdout.flush()
    out.write(line)
    out.flush()


def _fmt_peer(peer: Optional[Tuple[str, int]]) -> Optional[str]:
    if not peer:
        return None
    return f"{peer[0]}:{peer[1]}"


def run_once(port: int, config: Optional[Dict[str, Any]] = None) -> int:
    cfg = dict(DEFAULT_CONFIG)
    cfg.update(config or {})
    handler = ConnectionHandler(
        tls=bool(cfg.get("tls")),
        certs_dir=str(cfg.get("certs_dir") or "certs"),
        log_file=cfg.get("log_file"),
    )
    return handler.run(port)


# ------------- CLI -------------
class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        raise UsageError(f"ERROR, {message}")


def parse_port(raw: str) -> int:
    try:
        port = int(raw, 10)
    except ValueError:
        raise UsageError(f"ERROR, invalid port {raw!r}")
    if not 1 <= port <= 65535:
        raise UsageError(f"ERROR, port {port} out of range 1-65535")
    return port


def parse_args(argv=None):
    p = _ArgumentParser(description="Accept one TCP connection, read one message, reply with a fixed acknowledgment.")
    p.add_argument("port", nargs="?", help="TCP port to listen on (1-65535)")
    p.add_argument("--config", default=None, help="Path to a JSON config file")
    p.add_argument("--tls", action="store_true", default=None, help="Wrap the connection in TLS with a self-signed certificate")
    p.add_argument("--certs-dir", default=None, help="Where the server certificate is kept (default: certs)")
    p.add_argument("--log-file", default=None, help="Append JSON Lines events to this file")
    args = p.parse_args(argv)
    if args.port is None:
        raise UsageError("ERROR, no port provided")
    return args


def main(argv=None) -> int:
    try:
        args = parse_args(argv)
        port = parse_port(args.port)
        config = load_config(args.config)
        if args.tls is not None:
            config["tls"] = args.tls
        if args.certs_dir is not None:
            config["certs_dir"] = args.certs_dir
        if args.log_file is not None:
            config["log_file"] = str(Path(args.log_file))
        run_once(port, config)
    except ResponderError as e:
        print(e, file=sys.stderr)
        return 1
    print("[SERVER] Connection closed. Server exiting.", flush=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
