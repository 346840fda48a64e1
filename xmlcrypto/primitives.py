"""
Digest, signature and MAC primitives shared by the signer and the verifier.
"""

import logging
from base64 import b64encode
from typing import Union

import cryptography.exceptions
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import dsa, ec, rsa, utils
from cryptography.hazmat.primitives.asymmetric.padding import MGF1, PSS, AsymmetricPadding, PKCS1v15
from cryptography.hazmat.primitives.hashes import Hash
from cryptography.hazmat.primitives.hmac import HMAC

from .algorithms import DigestAlgorithm, SignatureMethod, digest_algorithm_implementations
from .exceptions import InvalidInput, KeyAlgorithmMismatchError, UnsupportedAlgorithmError
from .util import bits_to_bytes_unit, bytes_to_long, ensure_bytes, long_to_bytes

logger = logging.getLogger(__name__)

private_key_types = {
    "RSA": rsa.RSAPrivateKey,
    "RSA_PSS": rsa.RSAPrivateKey,
    "DSA": dsa.DSAPrivateKey,
    "ECDSA": ec.EllipticCurvePrivateKey,
}

public_key_types = {
    "RSA": rsa.RSAPublicKey,
    "RSA_PSS": rsa.RSAPublicKey,
    "DSA": dsa.DSAPublicKey,
    "ECDSA": ec.EllipticCurvePublicKey,
}


def _digest_algorithm(algorithm) -> DigestAlgorithm:
    if isinstance(algorithm, DigestAlgorithm):
        return algorithm
    return DigestAlgorithm.from_name(algorithm)


def _signature_method(algorithm) -> SignatureMethod:
    if isinstance(algorithm, SignatureMethod):
        return algorithm
    return SignatureMethod.from_name(algorithm)


class DigestSigner:
    """
    Computes digests and produces or checks signatures over byte strings. Instances hold no state and can be shared
    between threads.
    """

    def digest(self, data: bytes, algorithm: Union[DigestAlgorithm, str]) -> bytes:
        algorithm = _digest_algorithm(algorithm)
        hasher = Hash(algorithm=digest_algorithm_implementations[algorithm]())
        hasher.update(data)
        return hasher.finalize()

    def sign(self, data: bytes, key, algorithm: Union[SignatureMethod, str]) -> bytes:
        """
        Sign **data** with **key** and return the raw signature value.

        :param key:
            A private key object of the family required by **algorithm**, or the shared secret (``bytes`` or ``str``)
            for HMAC methods.
        :raises: :class:`xmlcrypto.exceptions.KeyAlgorithmMismatchError` if the key is of the wrong family.
        """
        algorithm = _signature_method(algorithm)
        hash_alg = digest_algorithm_implementations[algorithm]()
        if algorithm.family == "HMAC":
            if not isinstance(key, (str, bytes)):
                raise KeyAlgorithmMismatchError(f"{algorithm.name} requires a shared secret, got {type(key).__name__}")
            signer = HMAC(key=ensure_bytes(key), algorithm=hash_alg)
            signer.update(data)
            return signer.finalize()

        if not isinstance(key, private_key_types[algorithm.family]):
            raise KeyAlgorithmMismatchError(
                f"{algorithm.name} requires a {algorithm.family} private key, got {type(key).__name__}"
            )
        if algorithm.family == "DSA":
            signature = key.sign(data, algorithm=hash_alg)
        elif algorithm.family == "ECDSA":
            signature = key.sign(data, signature_algorithm=ec.ECDSA(algorithm=hash_alg))
        else:
            signature = key.sign(data, padding=self._rsa_padding(algorithm, hash_alg), algorithm=hash_alg)

        if algorithm.family in ("DSA", "ECDSA"):
            # Note: The output of the DSA and ECDSA signers is a DER-encoded ASN.1 sequence of two DER integers.
            (r, s) = utils.decode_dss_signature(signature)
            int_len = bits_to_bytes_unit(key.key_size)
            signature = long_to_bytes(r, blocksize=int_len) + long_to_bytes(s, blocksize=int_len)
        return signature

    def verify(self, data: bytes, signature: bytes, key, algorithm: Union[SignatureMethod, str]) -> bool:
        """
        Return whether **signature** is a valid signature of **data**. A mismatch is reported as ``False``; only keys of
        the wrong family raise.

        :param key:
            A public key object, an :class:`cryptography.x509.Certificate` carrying one, or the shared secret for HMAC
            methods.
        """
        algorithm = _signature_method(algorithm)
        hash_alg = digest_algorithm_implementations[algorithm]()
        if algorithm.family == "HMAC":
            if not isinstance(key, (str, bytes)):
                raise KeyAlgorithmMismatchError(f"{algorithm.name} requires a shared secret, got {type(key).__name__}")
            verifier = HMAC(key=ensure_bytes(key), algorithm=hash_alg)
            verifier.update(data)
            try:
                verifier.verify(signature)
            except cryptography.exceptions.InvalidSignature:
                logger.debug("HMAC mismatch for %s", algorithm.name)
                return False
            return True

        if isinstance(key, x509.Certificate):
            key = key.public_key()
        if not isinstance(key, public_key_types[algorithm.family]):
            raise KeyAlgorithmMismatchError(
                f"{algorithm.name} requires a {algorithm.family} public key, got {type(key).__name__}"
            )
        try:
            if algorithm.family == "DSA":
                key.verify(self._encode_dss_signature(signature), data, algorithm=hash_alg)
            elif algorithm.family == "ECDSA":
                key.verify(self._encode_dss_signature(signature), data, signature_algorithm=ec.ECDSA(hash_alg))
            else:
                key.verify(signature, data, padding=self._rsa_padding(algorithm, hash_alg), algorithm=hash_alg)
        except (cryptography.exceptions.InvalidSignature, InvalidInput) as e:
            logger.debug("Signature mismatch for %s: %s", algorithm.name, e)
            return False
        return True

    def _rsa_padding(self, algorithm: SignatureMethod, hash_alg) -> AsymmetricPadding:
        if algorithm.family == "RSA_PSS":
            # See https://www.rfc-editor.org/rfc/rfc9231.html#section-2.3.10
            return PSS(mgf=MGF1(algorithm=hash_alg), salt_length=hash_alg.digest_size)
        return PKCS1v15()

    def _encode_dss_signature(self, raw_signature: bytes) -> bytes:
        if len(raw_signature) == 0 or len(raw_signature) % 2:
            raise InvalidInput(f"Expected an even length r || s SignatureValue, got {len(raw_signature)} bytes")
        int_len = len(raw_signature) // 2
        r = bytes_to_long(raw_signature[:int_len])
        s = bytes_to_long(raw_signature[int_len:])
        return utils.encode_dss_signature(r, s)


def _encode(value: bytes, encoding: str) -> str:
    if encoding == "base64":
        return b64encode(value).decode()
    elif encoding == "hex":
        return value.hex()
    raise UnsupportedAlgorithmError(f"Unrecognized output encoding: {encoding}")


def compute_hash(data: Union[str, bytes], algorithm: Union[DigestAlgorithm, str] = "SHA256", encoding="base64") -> str:
    """
    Hash **data** and return the digest as base64 (the default) or hex text.
    """
    return _encode(DigestSigner().digest(ensure_bytes(data), algorithm), encoding)


def compute_hmac(
    data: Union[str, bytes],
    key: Union[str, bytes],
    algorithm: Union[DigestAlgorithm, str] = "SHA256",
    encoding="base64",
) -> str:
    """
    Compute a keyed-hash message authentication code of **data** and return it as base64 (the default) or hex text.
    """
    if not key:
        raise InvalidInput("HMAC key must not be empty")
    algorithm = _digest_algorithm(algorithm)
    hasher = HMAC(key=ensure_bytes(key), algorithm=digest_algorithm_implementations[algorithm]())
    hasher.update(ensure_bytes(data))
    return _encode(hasher.finalize(), encoding)
