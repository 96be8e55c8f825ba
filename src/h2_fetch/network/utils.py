"""
Network utilities for h2_fetch.

SSL context setup for HTTP/2 over TLS.
"""

import ssl
from typing import List, Optional


H2_ALPN_PROTOCOLS = ["h2"]


def create_ssl_context(
    alpn_protocols: Optional[List[str]] = None,
    verify_mode: int = ssl.CERT_REQUIRED,
    check_hostname: bool = True,
    cert_file: Optional[str] = None,
    key_file: Optional[str] = None,
) -> ssl.SSLContext:
    """
    Create an SSL context suitable for HTTP/2.

    Args:
        alpn_protocols: ALPN protocols to offer (defaults to ['h2'])
        verify_mode: SSL verification mode
        check_hostname: Whether to verify hostname
        cert_file: Path to certificate file (for client auth)
        key_file: Path to private key file (for client auth)

    Returns:
        Configured SSL context

    Raises:
        ssl.SSLError: If SSL context creation fails
    """
    context = ssl.create_default_context()
    context.check_hostname = check_hostname
    context.verify_mode = verify_mode

    context.set_alpn_protocols(alpn_protocols or H2_ALPN_PROTOCOLS)

    # RFC 9113 9.2: TLS 1.2 or later, no compression, no renegotiation
    context.options |= ssl.OP_NO_COMPRESSION
    context.options |= ssl.OP_NO_RENEGOTIATION
    context.minimum_version = ssl.TLSVersion.TLSv1_2

    # TLS 1.2 cipher suites must be on the RFC 9113 allow list
    context.set_ciphers('ECDHE+AESGCM:ECDHE+CHACHA20:DHE+AESGCM:DHE+CHACHA20')

    if cert_file and key_file:
        context.load_cert_chain(cert_file, key_file)

    return context
