from __future__ import annotations

from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs7, pkcs12

from afip_sdk.application.ports.signer_port import CmsSignerPort


class Pkcs7CmsSigner(CmsSignerPort):
    """CMS/PKCS#7 signer for the WSAA login ticket request.

    WSAA expects the TRA embedded in the signature (no detached content),
    DER encoded, signed with the private key that matches the certificate
    registered for the CUIT.
    """

    def __init__(self, certificate: x509.Certificate, private_key: rsa.RSAPrivateKey) -> None:
        self.certificate = certificate
        self.private_key = private_key

    @classmethod
    def from_pkcs12(cls, path: str | Path, password: str | None) -> "Pkcs7CmsSigner":
        data = Path(path).read_bytes()
        key, cert, _ = pkcs12.load_key_and_certificates(
            data, password.encode() if password else None
        )
        if key is None or cert is None:
            raise ValueError(f"PKCS#12 file {path} does not contain both a key and a certificate")
        return cls(cert, key)  # type: ignore[arg-type]

    @classmethod
    def from_pem(
        cls, cert_path: str | Path, key_path: str | Path, password: str | None = None
    ) -> "Pkcs7CmsSigner":
        cert = x509.load_pem_x509_certificate(Path(cert_path).read_bytes())
        key = serialization.load_pem_private_key(
            Path(key_path).read_bytes(), password=password.encode() if password else None
        )
        return cls(cert, key)  # type: ignore[arg-type]

    def sign(self, payload: bytes) -> bytes:
        return (
            pkcs7.PKCS7SignatureBuilder()
            .set_data(payload)
            .add_signer(self.certificate, self.private_key, hashes.SHA256())
            .sign(serialization.Encoding.DER, [pkcs7.PKCS7Options.Binary])
        )
