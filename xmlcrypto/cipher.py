"""
Symmetric and asymmetric encryption of text payloads.

Ciphertexts are returned as base64 text. Symmetric ciphertexts carry the random nonce in front of the AEAD output;
asymmetric ciphertexts are a sequence of RSA blocks of the key's modulus length, so payloads of any length can be
encrypted.
"""

import logging
import os
from base64 import b64decode, b64encode
from binascii import Error as BinasciiError
from typing import Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.hazmat.primitives.serialization import (
    load_der_private_key,
    load_der_public_key,
    load_pem_private_key,
    load_pem_public_key,
)

from .algorithms import CipherAlgorithm, CipherMode
from .exceptions import DecryptionError, KeyFormatError, UnsupportedAlgorithmError
from .util import bytes_to_long, ensure_bytes, long_to_bytes

logger = logging.getLogger(__name__)

aead_implementations = {
    CipherAlgorithm.AES_GCM: AESGCM,
    CipherAlgorithm.CHACHA20_POLY1305: ChaCha20Poly1305,
}


class CipherEngine:
    """
    Encrypts and decrypts text with a symmetric secret or an RSA key pair.

    By default the public key encrypts and the private key decrypts. Hosts written against the EXPath crypto module
    pass the keys the other way around; ``legacy_key_order=True`` accepts that: the private key then produces PKCS #1
    type 1 blocks (the padding used for signatures) and the public key recovers them, so only ``RSA-PKCS1`` is
    accepted in that order. Legacy ciphertexts are readable by anyone holding the public key, so the option only
    provides integrity, not confidentiality.

    :param legacy_key_order: Encrypt with the private key and decrypt with the public key.
    """

    nonce_size = 12
    tag_size = 16

    def __init__(self, legacy_key_order: bool = False):
        self.legacy_key_order = legacy_key_order

    def encrypt(
        self,
        payload: Union[str, bytes],
        mode: Union[CipherMode, str],
        key,
        algorithm: Union[CipherAlgorithm, str] = CipherAlgorithm.AES_GCM,
    ) -> str:
        """
        :param payload: Text to encrypt. ``str`` payloads are encoded as UTF-8.
        :param mode: ``symmetric`` or ``asymmetric``.
        :param key:
            The shared secret (``bytes`` or ``str``) for symmetric ciphers. For asymmetric ciphers, the public key (a
            cryptography key object, a certificate, or PEM/DER data), or the private key with ``legacy_key_order``.
        :param algorithm: A :class:`CipherAlgorithm` or one of its names (``AES``, ``ChaCha20-Poly1305``, ``RSA``,
            ``RSA-PKCS1``).
        :returns: The ciphertext as base64 text.
        """
        algorithm = self._get_algorithm(mode, algorithm)
        data = ensure_bytes(payload)
        if algorithm.mode == CipherMode.symmetric:
            nonce = os.urandom(self.nonce_size)
            ciphertext = nonce + self._get_aead(algorithm, key).encrypt(nonce, data, None)
        elif self.legacy_key_order:
            ciphertext = self._private_encrypt(data, self._load_private_key(key))
        else:
            public_key = self._load_public_key(key)
            rsa_padding = self._get_padding(algorithm)
            block_size = self._max_block_size(public_key, algorithm)
            ciphertext = b"".join(
                public_key.encrypt(block, rsa_padding) for block in self._split(data, block_size)
            )
        logger.debug("Encrypted %d bytes with %s", len(data), algorithm.value)
        return b64encode(ciphertext).decode()

    def decrypt(
        self,
        payload: Union[str, bytes],
        mode: Union[CipherMode, str],
        key,
        algorithm: Union[CipherAlgorithm, str] = CipherAlgorithm.AES_GCM,
    ) -> str:
        """
        Reverse :meth:`encrypt`. The key is the shared secret, the private key, or with ``legacy_key_order`` the public
        key.

        :raises: :class:`xmlcrypto.exceptions.DecryptionError` if the payload was not produced with this key and
            algorithm, or was modified.
        """
        algorithm = self._get_algorithm(mode, algorithm)
        try:
            ciphertext = b64decode(ensure_bytes(payload), validate=True)
        except BinasciiError as e:
            raise DecryptionError("Encrypted payload is not valid base64") from e

        if algorithm.mode == CipherMode.symmetric:
            if len(ciphertext) < self.nonce_size + self.tag_size:
                raise DecryptionError("Encrypted payload is too short")
            nonce, ciphertext = ciphertext[: self.nonce_size], ciphertext[self.nonce_size :]
            try:
                data = self._get_aead(algorithm, key).decrypt(nonce, ciphertext, None)
            except InvalidTag as e:
                raise DecryptionError(f"Unable to decrypt payload with {algorithm.value}: authentication failed") from e
        elif self.legacy_key_order:
            data = self._public_decrypt(ciphertext, self._load_public_key(key))
        else:
            private_key = self._load_private_key(key)
            rsa_padding = self._get_padding(algorithm)
            try:
                data = b"".join(
                    private_key.decrypt(block, rsa_padding)
                    for block in self._split_ciphertext(ciphertext, private_key.key_size)
                )
            except ValueError as e:
                raise DecryptionError(f"Unable to decrypt payload with {algorithm.value}") from e

        try:
            return data.decode()
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted payload is not valid UTF-8 text") from e

    def _get_algorithm(self, mode, algorithm) -> CipherAlgorithm:
        mode = CipherMode.from_name(mode)
        algorithm = CipherAlgorithm.from_name(algorithm)
        if algorithm.mode != mode:
            raise UnsupportedAlgorithmError(f"{algorithm.value} cannot be used in {mode.value} mode")
        if self.legacy_key_order and algorithm == CipherAlgorithm.RSA_OAEP:
            raise UnsupportedAlgorithmError(
                f"{algorithm.value} (OAEP) cannot be used with legacy_key_order, use {CipherAlgorithm.RSA_PKCS1.value}"
            )
        return algorithm

    def _get_aead(self, algorithm: CipherAlgorithm, key):
        if not isinstance(key, (str, bytes)):
            raise KeyFormatError(f"{algorithm.value} requires a secret key, got {type(key).__name__}")
        try:
            return aead_implementations[algorithm](ensure_bytes(key))
        except ValueError as e:
            raise KeyFormatError(f"Invalid {algorithm.value} key: {e}") from e

    def _get_padding(self, algorithm: CipherAlgorithm):
        if algorithm == CipherAlgorithm.RSA_PKCS1:
            return padding.PKCS1v15()
        return padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None)

    def _max_block_size(self, key, algorithm: CipherAlgorithm) -> int:
        modulus_size = (key.key_size + 7) // 8
        if algorithm == CipherAlgorithm.RSA_PKCS1:
            return modulus_size - 11
        # See https://www.rfc-editor.org/rfc/rfc8017#section-7.1.1
        return modulus_size - 2 * hashes.SHA256.digest_size - 2

    def _split(self, data: bytes, block_size: int):
        return [data[i : i + block_size] for i in range(0, len(data), block_size)] or [b""]

    def _split_ciphertext(self, ciphertext: bytes, key_size: int):
        modulus_size = (key_size + 7) // 8
        if len(ciphertext) == 0 or len(ciphertext) % modulus_size:
            raise DecryptionError(f"Encrypted payload is not a sequence of {modulus_size} byte blocks")
        return self._split(ciphertext, modulus_size)

    def _load_private_key(self, key) -> rsa.RSAPrivateKey:
        if isinstance(key, (str, bytes)):
            key_bytes = ensure_bytes(key)
            try:
                if b"-----BEGIN" in key_bytes:
                    key = load_pem_private_key(key_bytes, password=None)
                else:
                    key = load_der_private_key(key_bytes, password=None)
            except (ValueError, TypeError) as e:
                raise KeyFormatError(f"Unable to load private key: {e}") from e
        if isinstance(key, rsa.RSAPublicKey):
            hint = " (the public key decrypts when legacy_key_order is set)" if self.legacy_key_order else ""
            raise KeyFormatError(f"Expected an RSA private key, got a public key{hint}")
        if not isinstance(key, rsa.RSAPrivateKey):
            raise KeyFormatError(f"Expected an RSA private key, got {type(key).__name__}")
        return key

    def _load_public_key(self, key) -> rsa.RSAPublicKey:
        if isinstance(key, (str, bytes)):
            key_bytes = ensure_bytes(key)
            try:
                if b"-----BEGIN CERTIFICATE" in key_bytes:
                    key = x509.load_pem_x509_certificate(key_bytes)
                elif b"-----BEGIN" in key_bytes:
                    key = load_pem_public_key(key_bytes)
                else:
                    key = load_der_public_key(key_bytes)
            except ValueError as e:
                raise KeyFormatError(f"Unable to load public key: {e}") from e
        if isinstance(key, x509.Certificate):
            key = key.public_key()
        if isinstance(key, rsa.RSAPrivateKey):
            hint = "" if self.legacy_key_order else " (set legacy_key_order to encrypt with the private key)"
            raise KeyFormatError(f"Expected an RSA public key, got a private key{hint}")
        if not isinstance(key, rsa.RSAPublicKey):
            raise KeyFormatError(f"Expected an RSA public key, got {type(key).__name__}")
        return key

    def _private_encrypt(self, data: bytes, key: rsa.RSAPrivateKey) -> bytes:
        private_numbers = key.private_numbers()
        n, d = private_numbers.public_numbers.n, private_numbers.d
        modulus_size = (key.key_size + 7) // 8
        blocks = []
        for block in self._split(data, modulus_size - 11):
            # PKCS #1 v1.5 block type 1: 00 01 FF..FF 00 || data
            encoded = b"\x00\x01" + b"\xff" * (modulus_size - 3 - len(block)) + b"\x00" + block
            blocks.append(long_to_bytes(pow(bytes_to_long(encoded), d, n), blocksize=modulus_size))
        return b"".join(blocks)

    def _public_decrypt(self, ciphertext: bytes, key: rsa.RSAPublicKey) -> bytes:
        data = b""
        for block in self._split_ciphertext(ciphertext, key.key_size):
            try:
                data += key.recover_data_from_signature(block, padding.PKCS1v15(), None)
            except (InvalidSignature, ValueError) as e:
                raise DecryptionError("Unable to decrypt payload: invalid PKCS #1 block, wrong key?") from e
        return data
