"""Client-certificate TLS contexts for the source and collector connections."""

from __future__ import annotations

import ssl


def build_ssl_context(
    cert: str | None = None,
    key: str | None = None,
    ca: str | None = None,
    identity_file: str | None = None,
) -> ssl.SSLContext:
    """Build a TLS context presenting a client certificate.

    ``identity_file`` is a single PEM holding both certificate and key and
    takes precedence over ``cert``/``key``.  Without ``ca`` the system trust
    store is used.
    """
    if cert and not key:
        msg = "TLS cert provided with no private key"
        raise ValueError(msg)
    if key and not cert:
        msg = "TLS private key provided with no cert"
        raise ValueError(msg)

    ctx = ssl.create_default_context(cafile=ca) if ca else ssl.create_default_context()
    if identity_file:
        ctx.load_cert_chain(identity_file)
    elif cert and key:
        ctx.load_cert_chain(cert, key)
    return ctx
