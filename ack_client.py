#!/usr/bin/env python3
import argparse
import socket
import ssl
import sys

import certifi

from typing import Optional

BUFFER_SIZE = 4096


def make_client_context(cafile: Optional[str] = None, verify: bool = True) -> ssl.SSLContext:
    """TLS client context trusting cafile, or the certifi bundle when none is given."""
    if not verify:
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        return ctx
    return ssl.create_default_context(cafile=cafile or certifi.where())


def send_message(host: str, port: int, message: bytes, tls: bool = False,
                 cafile: Optional[str] = None, verify: bool = True,
                 timeout: float = 5.0) -> bytes:
    """Send message, half-close, and return everything the server sent back."""
    sock = socket.create_connection((host, port), timeout=timeout)
    if tls:
        try:
            sock = make_client_context(cafile, verify).wrap_socket(sock, server_hostname=host)
        except OSError:
            sock.close()
            raise

    with sock:
        sock.sendall(message)
        if not tls:
            # no half-close over TLS
            sock.shutdown(socket.SHUT_WR)
        chunks = []
        while True:
            try:
                buf = sock.recv(BUFFER_SIZE)
            except ssl.SSLEOFError:
                # server closes without close_notify
                break
            if not buf:
                break
            chunks.append(buf)
    return b"".join(chunks)


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Send one message to an acknowledgment server and print the reply.")
    p.add_argument("host")
    p.add_argument("port", type=int)
    p.add_argument("message")
    p.add_argument("--tls", action="store_true", help="Connect over TLS")
    p.add_argument("--cafile", default=None, help="CA bundle to verify the server (default: certifi)")
    p.add_argument("--insecure", action="store_true", help="Skip TLS certificate verification")
    p.add_argument("--timeout", type=float, default=5.0, help="Socket timeout in seconds (default: 5)")
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        reply = send_message(args.host, args.port, args.message.encode("utf-8"),
                             tls=args.tls, cafile=args.cafile,
                             verify=not args.insecure, timeout=args.timeout)
    except OSError as e:
        print(f"[CLIENT] {args.host}:{args.port}: {e}", file=sys.stderr)
        return 1
    print(reply.decode("utf-8", errors="replace"))
    return 0


if __name__ == "__main__":
    sys.exit(main())
