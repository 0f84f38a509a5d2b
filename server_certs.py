import os
import ssl

from OpenSSL import crypto
from pathlib import Path
from typing import Tuple

CERT_VALID_SECONDS = 365 * 24 * 3600  # 1 year


def ensure_server_cert(certs_dir, hostname: str = "localhost") -> Tuple[str, str]:
    """
    Return (cert_path, key_path) of a self-signed certificate for hostname.
    If already exists on disk, reuse it.
    """
    certs_dir = Path(certs_dir)
    certs_dir.mkdir(parents=True, exist_ok=True)
    base = hostname.replace(":", "_")
    cert_path = certs_dir / f"{base}.crt.pem"
    key_path = certs_dir / f"{base}.key.pem"

    if cert_path.exists() and key_path.exists():
        return str(cert_path), str(key_path)

    key = crypto.PKey()
    key.generate_key(crypto.TYPE_RSA, 2048)

    cert = crypto.X509()
    cert.set_version(2)
    cert.set_serial_number(int.from_bytes(os.urandom(16), "big") >> 1)
    cert.get_subject().CN = hostname
    cert.gmtime_adj_notBefore(0)
    cert.gmtime_adj_notAfter(CERT_VALID_SECONDS)
    cert.set_issuer(cert.get_subject())
    cert.set_pubkey(key)
    cert.sign(key, "sha256")

    with open(cert_path, "wb") as f:
        f.write(crypto.dump_certificate(crypto.FILETYPE_PEM, cert))
    with open(key_path, "wb") as f:
        f.write(crypto.dump_privatekey(crypto.FILETYPE_PEM, key))
    os.chmod(key_path, 0o600)

    print(f"[TLS] Generated self-signed cert for {hostname}: {cert_path}")
    return str(cert_path), str(key_path)


def make_server_context(certs_dir, hostname: str = "localhost") -> ssl.SSLContext:
    certfile, keyfile = ensure_server_cert(certs_dir, hostname)
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.load_cert_chain(certfile, keyfile)
    return ctx
