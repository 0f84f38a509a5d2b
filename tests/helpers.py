import socket
import threading

from ack_server import ConnectionHandler, ResponderError


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def start_handler(**kwargs):
    """Open the listener synchronously, then run accept..close in a thread.

    Returns (handler, thread, result); result gets "received", "written" or "error".
    """
    handler = ConnectionHandler(**kwargs)
    handler.open_listener(0)
    result = {}

    def run():
        try:
            handler.accept_connection()
            result["received"] = handler.receive_message()
            result["written"] = handler.send_acknowledgment()
        except ResponderError as e:
            result["error"] = e
        finally:
            handler.close()

    t = threading.Thread(target=run, daemon=True)
    t.start()
    return handler, t, result
