"""Certificate authority for kbb8 TLS identities."""

from .tinyca import CertPair, ClientInfo, TinyCA

__all__ = ["CertPair", "ClientInfo", "TinyCA"]
