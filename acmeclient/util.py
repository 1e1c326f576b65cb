import enum
import re
import typing

import josepy
import yarl
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa, ec
from cryptography.x509 import NameOID

from acmeclient.client.exceptions import InvalidKeyType, InvalidArgument

KEY_FILE_MODE = 0o600

RSA_KEY_SIZES = range(2048, 4097)
EC_KEY_SIZES = frozenset([256, 384])

_KEY_TYPE_RE = re.compile(r"^(rsa|ec)-([0-9]{3,4})$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$")


class KeyAlgorithm(str, enum.Enum):
    RSA = "rsa"
    EC = "ec"


class KeyType(typing.NamedTuple):
    """A certificate key algorithm and its size in bits."""

    algorithm: KeyAlgorithm
    size: int


def parse_key_type(key_type: str) -> KeyType:
    """Parses a key type string.

    Accepts *rsa* (4096 bits), *ec* (256 bits) and the *ALGO-SIZE* forms
    *rsa-2048* up to *rsa-4096*, *ec-256* and *ec-384*.

    :param key_type: The key type string.
    :raises: :class:`~acmeclient.client.exceptions.InvalidKeyType` If the key type is not supported.
    :return: The parsed key type.
    """
    if key_type == "rsa":
        return KeyType(KeyAlgorithm.RSA, 4096)
    elif key_type == "ec":
        return KeyType(KeyAlgorithm.EC, 256)

    if not isinstance(key_type, str) or not (m := _KEY_TYPE_RE.match(key_type)):
        raise InvalidKeyType(key_type)

    algorithm, size = KeyAlgorithm(m.group(1)), int(m.group(2))
    if algorithm is KeyAlgorithm.RSA and size not in RSA_KEY_SIZES:
        raise InvalidKeyType(key_type)
    if algorithm is KeyAlgorithm.EC and size not in EC_KEY_SIZES:
        raise InvalidKeyType(key_type)

    return KeyType(algorithm, size)


def validate_date(value: str, name: str) -> None:
    """Ensures *value* is empty or formatted like *YYYY-MM-DDThh:mm:ssZ*."""
    if value and not _DATE_RE.match(value):
        raise InvalidArgument(
            f"{name} must be empty or a string similar to 0000-00-00T00:00:00Z"
        )


def is_url(url: typing.Optional[str]) -> bool:
    """Checks whether the given string is an absolute HTTP(S) URL."""
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = yarl.URL(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.host)


def b64(data: bytes) -> str:
    """JOSE base64url encoding without padding."""
    return josepy.encode_b64jose(data)


def generate_rsa_key(key_size=4096) -> rsa.RSAPrivateKey:
    """Generates an RSA private key.

    :param key_size: The RSA key size, between 2048 and 4096 bits.
    :return: The generated private key.
    """
    if key_size not in RSA_KEY_SIZES:
        raise InvalidArgument("RSA key size must be between 2048 and 4096.")

    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def generate_ec_key(key_size=256) -> ec.EllipticCurvePrivateKey:
    """Generates an EC private key on the NIST curve of the given size.

    :param key_size: The EC key size, 256 or 384.
    :return: The generated private key.
    """
    if key_size not in EC_KEY_SIZES:
        raise InvalidArgument("EC key size must be 256 or 384.")

    curve = getattr(ec, f"SECP{key_size}R1")
    return ec.generate_private_key(curve())


def generate_key(key_type: KeyType):
    if key_type.algorithm is KeyAlgorithm.RSA:
        return generate_rsa_key(key_type.size)
    return generate_ec_key(key_type.size)


def private_key_pem(private_key) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def public_key_pem(private_key) -> bytes:
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def load_private_key(pem: bytes):
    return serialization.load_pem_private_key(pem, password=None)


def generate_csr(
    CN: str, private_key, names: typing.List[str]
) -> x509.CertificateSigningRequest:
    """Generates a certificate signing request.

    :param CN: The requested common name.
    :param private_key: The private key to sign the CSR with.
    :param names: The requested names in the CSR.
    :return: The generated CSR.
    """
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, CN)]))
        .add_extension(
            x509.BasicConstraints(ca=False, path_length=None), critical=False
        )
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=True,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=False,
        )
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(name) for name in names]),
            critical=False,
        )
        .sign(private_key, hashes.SHA256())
    )

    return csr


_CERT_RE = re.compile(
    r"-----BEGIN CERTIFICATE-----\r?\n.+?\r?\n-----END CERTIFICATE-----",
    re.DOTALL,
)


def pem_split(pem: str) -> typing.List[str]:
    """Splits a string of concatenated PEM certificates into its blocks, preserving their order.

    :param pem: The concatenated PEM encoded certificates.
    :return: List of the PEM blocks found in the string.
    """
    return [match.group(0) for match in _CERT_RE.finditer(pem)]


_PEM_LOADERS = {
    "CERTIFICATE": x509.load_pem_x509_certificate,
    "CERTIFICATE REQUEST": x509.load_pem_x509_csr,
}


def pem_to_b64der(pem: typing.Union[str, bytes], label: str) -> str:
    """Loads the first *label* block and re-encodes its DER bytes as base64url.

    :param pem: The PEM document.
    :param label: The PEM label, either *CERTIFICATE* or *CERTIFICATE REQUEST*.
    :raises: :class:`~acmeclient.client.exceptions.InvalidArgument` If no valid block is present.
    :return: The JOSE base64url encoded DER bytes.
    """
    if isinstance(pem, str):
        pem = pem.encode()

    try:
        obj = _PEM_LOADERS[label](pem)
    except KeyError:
        raise InvalidArgument(f"Unsupported PEM label {label}")
    except ValueError as e:
        raise InvalidArgument(f"No valid PEM block labeled {label} found") from e

    return b64(obj.public_bytes(serialization.Encoding.DER))


def issuer_common_name(pem: str) -> typing.Optional[str]:
    """Returns the common name of the given certificate's issuer, if there is one."""
    cert = x509.load_pem_x509_certificate(pem.encode())
    attributes = cert.issuer.get_attributes_for_oid(NameOID.COMMON_NAME)
    return attributes[0].value if attributes else None
