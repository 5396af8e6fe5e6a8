"""Key handling, CSRs and JWS signing for the ACME client."""

import base64
import hashlib
import json

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.x509.oid import NameOID

# Type alias for private keys
PrivateKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey

# JWS parameters per supported curve: (JWK crv, coordinate size, alg, hash)
_CURVES: dict[str, tuple[str, int, str, type[hashes.HashAlgorithm]]] = {
    "secp256r1": ("P-256", 32, "ES256", hashes.SHA256),
    "secp384r1": ("P-384", 48, "ES384", hashes.SHA384),
}


def generate_rsa_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Generate an RSA private key.

    Args:
        key_size: Key size in bits.

    Returns:
        RSA private key.
    """
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def generate_ecdsa_key() -> ec.EllipticCurvePrivateKey:
    """Generate an ECDSA P-256 private key (used for the ACME account)."""
    return ec.generate_private_key(ec.SECP256R1())


def private_key_to_pem(key: PrivateKey) -> bytes:
    """Serialize a private key as unencrypted PEM."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def load_private_key(pem: bytes) -> PrivateKey:
    """Load an unencrypted PEM private key.

    Raises:
        ValueError: If the PEM is malformed or the key type is unsupported.
    """
    key = serialization.load_pem_private_key(pem, password=None)
    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise ValueError(f"Unsupported key type: {type(key).__name__}")
    return key


def public_key_matches(key: PrivateKey, certificate: x509.Certificate) -> bool:
    """Check that a certificate was issued for the given private key."""
    fmt = serialization.PublicFormat.SubjectPublicKeyInfo
    ours = key.public_key().public_bytes(serialization.Encoding.DER, fmt)
    theirs = certificate.public_key().public_bytes(serialization.Encoding.DER, fmt)
    return ours == theirs


def create_csr(key: PrivateKey, domains: list[str]) -> x509.CertificateSigningRequest:
    """Create a CSR with the first domain as CN and all domains as SANs.

    Raises:
        ValueError: If domains list is empty.
    """
    if not domains:
        raise ValueError("At least one domain is required")

    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])])
    san = x509.SubjectAlternativeName([x509.DNSName(domain) for domain in domains])

    builder = x509.CertificateSigningRequestBuilder().subject_name(subject)
    return builder.add_extension(san, critical=False).sign(key, hashes.SHA256())


def base64url_encode(data: bytes) -> str:
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _int_to_base64url(n: int, length: int) -> str:
    return base64url_encode(n.to_bytes(length, byteorder="big"))


def _curve_params(key: ec.EllipticCurvePrivateKey) -> tuple[str, int, str, type[hashes.HashAlgorithm]]:
    curve_name = key.curve.name
    if curve_name not in _CURVES:
        raise ValueError(f"Unsupported curve: {curve_name}")
    return _CURVES[curve_name]


def get_jwk(key: PrivateKey) -> dict:
    """Get the public JWK (RFC 7517) for a private key."""
    if isinstance(key, rsa.RSAPrivateKey):
        numbers = key.public_key().public_numbers()
        return {
            "kty": "RSA",
            "n": _int_to_base64url(numbers.n, (numbers.n.bit_length() + 7) // 8),
            "e": _int_to_base64url(numbers.e, (numbers.e.bit_length() + 7) // 8),
        }

    crv, size, _, _ = _curve_params(key)
    numbers = key.public_key().public_numbers()
    return {
        "kty": "EC",
        "crv": crv,
        "x": _int_to_base64url(numbers.x, size),
        "y": _int_to_base64url(numbers.y, size),
    }


def key_thumbprint(key: PrivateKey) -> str:
    """Compute the base64url SHA-256 JWK thumbprint of a key (RFC 7638)."""
    jwk = get_jwk(key)
    members = ("e", "kty", "n") if jwk["kty"] == "RSA" else ("crv", "kty", "x", "y")
    canonical = json.dumps({m: jwk[m] for m in members}, sort_keys=True, separators=(",", ":"))
    return base64url_encode(hashlib.sha256(canonical.encode("utf-8")).digest())


def sign_jws(
    key: PrivateKey,
    payload: dict | str,
    url: str,
    nonce: str,
    kid: str | None = None,
) -> dict[str, str]:
    """Sign a payload as a flattened JWS (RFC 7515) for ACME.

    Args:
        key: Private key to sign with.
        payload: Payload to sign (dict for JSON, "" for POST-as-GET).
        url: URL of the ACME endpoint.
        nonce: Replay nonce.
        kid: Account URL. If None the JWK is embedded instead.

    Returns:
        Dict with protected, payload and signature members.
    """
    if isinstance(key, rsa.RSAPrivateKey):
        alg = "RS256"
    else:
        _, size, alg, hash_cls = _curve_params(key)

    protected: dict[str, str | dict] = {"alg": alg, "nonce": nonce, "url": url}
    if kid:
        protected["kid"] = kid
    else:
        protected["jwk"] = get_jwk(key)

    protected_b64 = base64url_encode(json.dumps(protected, separators=(",", ":")).encode("utf-8"))
    if payload == "":
        payload_b64 = ""
    else:
        payload_b64 = base64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))

    signing_input = f"{protected_b64}.{payload_b64}".encode()

    if isinstance(key, rsa.RSAPrivateKey):
        signature = key.sign(signing_input, padding.PKCS1v15(), hashes.SHA256())
    else:
        # JWS wants fixed-size r||s, not DER
        r, s = decode_dss_signature(key.sign(signing_input, ec.ECDSA(hash_cls())))
        signature = r.to_bytes(size, byteorder="big") + s.to_bytes(size, byteorder="big")

    return {
        "protected": protected_b64,
        "payload": payload_b64,
        "signature": base64url_encode(signature),
    }
