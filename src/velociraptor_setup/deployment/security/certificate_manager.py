"""
Certificate material for the frontend and GUI listeners.

A deployment either gets a freshly issued self-signed CA plus a server
certificate, or reuses a PEM chain and key the operator already has.
Nothing here touches disk except `load_custom`, which only reads.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from ipaddress import ip_address
from pathlib import Path
from typing import Iterable, Optional, Tuple

from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ...error_handling import ValidationError

DAYS_PER_YEAR = 365

# Addresses that mean "every interface" never belong in a SAN
WILDCARD_BINDS = frozenset({"0.0.0.0", "::"})

Issued = Tuple[x509.Certificate, rsa.RSAPrivateKey]


def _pem(cert: x509.Certificate) -> str:
    return cert.public_bytes(serialization.Encoding.PEM).decode()


def _key_pem(key: rsa.RSAPrivateKey) -> str:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()


def _sha256(cert: x509.Certificate) -> str:
    return cert.fingerprint(hashes.SHA256()).hex().upper()


def split_sans(hostname: str, extra: Iterable[str]) -> Tuple[list[str], list[str]]:
    """Sort SAN candidates into DNS names and IP literals.

    The hostname and localhost always come first; wildcard bind
    addresses are dropped and duplicates collapse in order.
    """
    dns, ips = [hostname, "localhost"], ["127.0.0.1"]
    for entry in extra:
        if not entry or entry in WILDCARD_BINDS:
            continue
        try:
            ip_address(entry)
        except ValueError:
            dns.append(entry)
        else:
            ips.append(entry)
    return list(dict.fromkeys(dns)), list(dict.fromkeys(ips))


@dataclass
class CertificateBundle:
    """PEM material that ends up inside server.config.yaml.

    `ca_key` is only set for bundles issued here; an operator-supplied
    chain never exposes the signing key.
    """
    ca_cert: str
    ca_key: Optional[str]
    server_cert: str
    server_key: str
    ca_fingerprint: str
    not_valid_after: str

    def public_summary(self) -> dict:
        """Fields safe to show a user: no keys, no PEM bodies."""
        return {
            "ca_fingerprint": self.ca_fingerprint,
            "server_certificate_expires": self.not_valid_after,
        }


class CertificateManager:
    """Issues or loads the PKI a Velociraptor server needs."""

    DEFAULT_KEY_SIZE = 4096
    DEFAULT_CA_VALIDITY_DAYS = 3650

    def __init__(self, key_size: int = DEFAULT_KEY_SIZE):
        self.key_size = key_size

    def _new_key(self) -> rsa.RSAPrivateKey:
        return rsa.generate_private_key(public_exponent=65537, key_size=self.key_size)

    def _sign(
        self,
        subject: x509.Name,
        issuer: x509.Name,
        signing_key: rsa.RSAPrivateKey,
        public_key,
        days: int,
        extensions: list,
    ) -> x509.Certificate:
        start = datetime.now(timezone.utc)
        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(public_key)
            .serial_number(x509.random_serial_number())
            .not_valid_before(start)
            .not_valid_after(start + timedelta(days=days))
        )
        for extension, critical in extensions:
            builder = builder.add_extension(extension, critical=critical)
        return builder.sign(signing_key, hashes.SHA256())

    def generate_ca(
        self,
        organization: str,
        common_name: str = "Velociraptor CA",
        validity_days: Optional[int] = None,
    ) -> Issued:
        """Issue a self-signed CA able to sign leaf certificates only."""
        key = self._new_key()
        name = x509.Name([
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ])
        usage = x509.KeyUsage(
            digital_signature=True,
            content_commitment=False,
            key_encipherment=False,
            data_encipherment=False,
            key_agreement=False,
            key_cert_sign=True,
            crl_sign=True,
            encipher_only=False,
            decipher_only=False,
        )
        cert = self._sign(
            subject=name,
            issuer=name,
            signing_key=key,
            public_key=key.public_key(),
            days=validity_days or self.DEFAULT_CA_VALIDITY_DAYS,
            extensions=[
                (x509.BasicConstraints(ca=True, path_length=0), True),
                (usage, True),
            ],
        )
        return cert, key

    def generate_server_cert(
        self,
        ca_cert: x509.Certificate,
        ca_key: rsa.RSAPrivateKey,
        common_name: str,
        san_dns: list[str],
        san_ips: list[str],
        validity_days: int,
    ) -> Issued:
        """Issue a leaf certificate for the frontend and GUI listeners.

        The same certificate serves both TLS server and client auth, since
        Velociraptor reuses it for its internal API connections.
        """
        key = self._new_key()
        alt_names = [x509.DNSName(name) for name in dict.fromkeys(san_dns)]
        alt_names += [x509.IPAddress(ip_address(ip)) for ip in dict.fromkeys(san_ips)]
        purposes = x509.ExtendedKeyUsage([
            ExtendedKeyUsageOID.SERVER_AUTH,
            ExtendedKeyUsageOID.CLIENT_AUTH,
        ])
        cert = self._sign(
            subject=x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]),
            issuer=ca_cert.subject,
            signing_key=ca_key,
            public_key=key.public_key(),
            days=validity_days,
            extensions=[
                (x509.BasicConstraints(ca=False, path_length=None), True),
                (purposes, False),
                (x509.SubjectAlternativeName(alt_names), False),
            ],
        )
        return cert, key

    def generate_bundle(
        self,
        server_hostname: str,
        organization: str,
        duration_years: int = 1,
        san_ips: Optional[list[str]] = None,
    ) -> CertificateBundle:
        """Issue a CA and server certificate for one deployment.

        `san_ips` takes the configured bind addresses; entries that are not
        IP literals are added as DNS names instead. The CA never expires
        before the server certificate it signed.
        """
        leaf_days = duration_years * DAYS_PER_YEAR
        ca_cert, ca_key = self.generate_ca(
            organization=organization,
            validity_days=max(leaf_days, self.DEFAULT_CA_VALIDITY_DAYS),
        )
        dns, ips = split_sans(server_hostname, san_ips or [])
        leaf, leaf_key = self.generate_server_cert(
            ca_cert, ca_key, server_hostname, dns, ips, leaf_days
        )
        return CertificateBundle(
            ca_cert=_pem(ca_cert),
            ca_key=_key_pem(ca_key),
            server_cert=_pem(leaf),
            server_key=_key_pem(leaf_key),
            ca_fingerprint=_sha256(ca_cert),
            not_valid_after=leaf.not_valid_after_utc.isoformat(),
        )

    def load_custom(self, cert_path: Path, key_path: Path) -> CertificateBundle:
        """Wrap an operator-supplied PEM chain and unencrypted key.

        The chain's first entry is the server certificate and its last
        entry the CA clients pin. A single self-signed certificate is
        therefore its own CA.

        Raises:
            ValidationError: If either file is unreadable or not PEM
        """
        field = "custom_certificate_path"
        try:
            chain_bytes = Path(cert_path).read_bytes()
            key_bytes = Path(key_path).read_bytes()
        except OSError as e:
            raise ValidationError(field, f"Cannot read custom certificate files: {e}") from e

        try:
            chain = x509.load_pem_x509_certificates(chain_bytes)
            serialization.load_pem_private_key(key_bytes, password=None)
        except ValueError as e:
            raise ValidationError(
                field,
                f"Custom certificate or key is not valid PEM: {e}",
                hint="Provide an unencrypted PEM private key and a PEM certificate chain",
            ) from e

        return CertificateBundle(
            ca_cert=_pem(chain[-1]),
            ca_key=None,
            server_cert=chain_bytes.decode(),
            server_key=key_bytes.decode(),
            ca_fingerprint=_sha256(chain[-1]),
            not_valid_after=chain[0].not_valid_after_utc.isoformat(),
        )
