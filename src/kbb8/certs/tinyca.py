"""A tiny certificate authority for local TLS identities.

Issues short-lived serving and client certificates signed by a freshly
generated, self-signed root. Everything is returned as PEM bytes, ready to be
written to disk or embedded in a kubeconfig.
"""

from __future__ import annotations

import datetime
import ipaddress
from dataclasses import dataclass, field

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

RSA_KEY_SIZE = 2048
CERT_VALIDITY = datetime.timedelta(weeks=1)
# Tolerate small clock skew between issuer and verifier
BACKDATE = datetime.timedelta(minutes=1)
CA_COMMON_NAME = "kbb8-environment"


@dataclass(frozen=True)
class ClientInfo:
    """Identity embedded in a client certificate."""

    name: str
    groups: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class CertPair:
    """A certificate and its private key."""

    cert: x509.Certificate
    key: rsa.RSAPrivateKey

    def cert_bytes(self) -> bytes:
        """PEM-encoded certificate."""
        return self.cert.public_bytes(serialization.Encoding.PEM)

    def key_bytes(self) -> bytes:
        """PEM-encoded private key (PKCS#1, unencrypted)."""
        return self.key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def as_bytes(self) -> tuple[bytes, bytes]:
        """PEM-encoded (cert, key) pair."""
        return self.cert_bytes(), self.key_bytes()


def _new_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)


def _validity() -> tuple[datetime.datetime, datetime.datetime]:
    now = datetime.datetime.now(datetime.timezone.utc)
    return now - BACKDATE, now + CERT_VALIDITY


def _subject_alt_names(names: tuple[str, ...]) -> x509.SubjectAlternativeName:
    entries: list[x509.GeneralName] = []
    for name in names:
        try:
            entries.append(x509.IPAddress(ipaddress.ip_address(name)))
        except ValueError:
            entries.append(x509.DNSName(name))
    return x509.SubjectAlternativeName(entries)


class TinyCA:
    """Self-signed certificate authority."""

    def __init__(self, common_name: str = CA_COMMON_NAME):
        """Generate a fresh root key and certificate.

        Args:
            common_name: Subject CN of the CA certificate.
        """
        key = _new_private_key()
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        not_before, not_after = _validity()

        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_after)
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
            .sign(key, hashes.SHA256())
        )
        self.ca = CertPair(cert=cert, key=key)

    def cert_bytes(self) -> bytes:
        """PEM-encoded CA certificate, for distribution as a trust anchor."""
        return self.ca.cert_bytes()

    def _issue(
        self,
        subject: x509.Name,
        usage: x509.ObjectIdentifier,
        san: x509.SubjectAlternativeName | None = None,
    ) -> CertPair:
        key = _new_private_key()
        not_before, not_after = _validity()

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(self.ca.cert.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_after)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.ExtendedKeyUsage([usage]), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(self.ca.key.public_key()),
                critical=False,
            )
        )
        if san is not None:
            builder = builder.add_extension(san, critical=False)

        return CertPair(cert=builder.sign(self.ca.key, hashes.SHA256()), key=key)

    def new_serving_cert(self, *names: str) -> CertPair:
        """Issue a server certificate valid for the given DNS names and IPs.

        Args:
            names: Subject alternative names; IP literals become IP SANs.

        Returns:
            CertPair signed by this CA.
        """
        if not names:
            raise ValueError("at least one name is required for a serving certificate")
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, names[0])])
        return self._issue(subject, ExtendedKeyUsageOID.SERVER_AUTH, _subject_alt_names(names))

    def new_client_cert(self, info: ClientInfo) -> CertPair:
        """Issue a client certificate.

        The name becomes the subject CN and each group an Organization entry,
        which is how the API server derives user and groups.
        """
        attributes = [x509.NameAttribute(NameOID.COMMON_NAME, info.name)]
        attributes.extend(x509.NameAttribute(NameOID.ORGANIZATION_NAME, g) for g in info.groups)
        return self._issue(x509.Name(attributes), ExtendedKeyUsageOID.CLIENT_AUTH)
