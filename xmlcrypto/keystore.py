import logging
import os
import re
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Mapping, Optional, Tuple, Union
from urllib.parse import urlparse
from urllib.request import url2pathname

import jks
from cryptography import x509
from cryptography.hazmat.primitives.serialization import load_der_private_key, pkcs12
from lxml import etree

from .exceptions import ConfigurationError, KeyResolutionError
from .processor import XMLProcessor
from .util import ensure_bytes, ensure_str

logger = logging.getLogger(__name__)


class KeystoreType(Enum):
    """
    Keystore formats understood by :class:`KeyMaterialResolver`.
    """

    PKCS12 = "PKCS12"
    JKS = "JKS"
    JCEKS = "JCEKS"

    @classmethod
    def from_name(cls, name: str) -> "KeystoreType":
        normalized = re.sub(r"[\s#_-]", "", name).upper()
        if normalized in ("PKCS12", "P12", "PFX"):
            return cls.PKCS12
        for member in cls:
            if normalized == member.value:
                return member
        raise KeyResolutionError(f"Unsupported keystore type: {name}")


@dataclass(frozen=True)
class CertificateDescriptor:
    """
    Identifies the keystore entry used to sign a document. An empty ``keystore_type`` defaults to ``PKCS12`` and an
    empty ``private_key_password`` defaults to ``keystore_password``; the remaining fields are required.
    """

    keystore_type: str = KeystoreType.PKCS12.value
    keystore_password: Union[str, bytes] = ""
    key_alias: str = ""
    private_key_password: Optional[Union[str, bytes]] = None
    keystore_location: str = ""

    def __post_init__(self):
        if not self.keystore_type:
            object.__setattr__(self, "keystore_type", KeystoreType.PKCS12.value)
        if not self.private_key_password:
            object.__setattr__(self, "private_key_password", self.keystore_password)
        for name in "keystore_password", "key_alias", "keystore_location":
            if not getattr(self, name):
                raise ConfigurationError(f"Certificate descriptor field {name} must not be empty")

    def __repr__(self):
        return (
            f"{self.__class__.__name__}(keystore_type={self.keystore_type!r}, key_alias={self.key_alias!r}, "
            f"keystore_location={self.keystore_location!r})"
        )

    @property
    def path(self) -> str:
        """
        The keystore location as a filesystem path. ``file:`` URIs are converted, anything else is used as given.
        """
        if self.keystore_location.startswith("file:"):
            return url2pathname(urlparse(self.keystore_location).path)
        return os.path.expanduser(self.keystore_location)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "CertificateDescriptor":
        """
        Build a descriptor from a mapping with either hyphenated (``key-alias``) or underscored (``key_alias``) keys.
        ``keystore-uri`` is accepted as a synonym of ``keystore_location``.
        """
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in mapping.items():
            name = key.replace("-", "_")
            if name == "keystore_uri":
                name = "keystore_location"
            if name not in known:
                raise ConfigurationError(f"Unknown certificate descriptor field: {key}")
            values[name] = value
        return cls(**values)

    @classmethod
    def from_xml(cls, data) -> "CertificateDescriptor":
        """
        Build a descriptor from a ``<digital-certificate>`` element::

            <digital-certificate>
              <keystore-type>PKCS12</keystore-type>
              <keystore-password>...</keystore-password>
              <key-alias>...</key-alias>
              <private-key-password>...</private-key-password>
              <keystore-uri>/path/to/keystore.p12</keystore-uri>
            </digital-certificate>
        """
        root = XMLProcessor().get_root(data)
        if etree.QName(root).localname != "digital-certificate":
            raise ConfigurationError(f"Expected a digital-certificate element, got {root.tag}")
        values = {}
        for child in root:
            if isinstance(child.tag, str):
                values[etree.QName(child).localname] = (child.text or "").strip()
        return cls.from_mapping(values)


@dataclass(frozen=True)
class KeyMaterial:
    """
    The keys and certificate resolved from one keystore entry. Owned by the operation that resolved it.
    """

    private_key: Any
    public_key: Any
    certificate: x509.Certificate
    additional_certificates: Tuple[x509.Certificate, ...] = ()

    @property
    def cert_chain(self):
        return [self.certificate, *self.additional_certificates]


class KeyMaterialResolver:
    """
    Loads the private key, public key and certificate named by a :class:`CertificateDescriptor`. The keystore file is
    opened read-only for the duration of :meth:`resolve` and nothing is kept afterwards.

    PKCS #12 keystores are read with cryptography, Java keystores (JKS and JCEKS) with pyjks. Aliases are matched
    ignoring case, as Java does.
    """

    def resolve(self, descriptor: CertificateDescriptor) -> KeyMaterial:
        keystore_type = KeystoreType.from_name(descriptor.keystore_type)
        path = descriptor.path
        try:
            with open(path, "rb") as fh:
                data = fh.read()
        except OSError as e:
            raise KeyResolutionError(f"Unable to open keystore {path}: {e.strerror or e}") from e

        if keystore_type == KeystoreType.PKCS12:
            material = self._resolve_pkcs12(data, descriptor)
        else:
            material = self._resolve_jks(data, descriptor)
        logger.debug("Resolved %s keystore entry %s from %s", keystore_type.value, descriptor.key_alias, path)
        return material

    def _resolve_pkcs12(self, data: bytes, descriptor: CertificateDescriptor) -> KeyMaterial:
        try:
            keystore = pkcs12.load_pkcs12(data, ensure_bytes(descriptor.keystore_password))
        except ValueError as e:
            raise KeyResolutionError(f"Unable to unlock keystore {descriptor.path}: {e}") from e

        alias = descriptor.key_alias.lower()

        def matches(entry):
            return entry.friendly_name is not None and ensure_str(entry.friendly_name).lower() == alias

        if keystore.cert is not None and matches(keystore.cert):
            if keystore.key is None:
                raise KeyResolutionError(f"Keystore entry {descriptor.key_alias} is not a private key entry")
            # PKCS #12 key bags are encrypted under the store password.
            if ensure_bytes(descriptor.private_key_password) != ensure_bytes(descriptor.keystore_password):
                raise KeyResolutionError(f"Unable to recover key {descriptor.key_alias}: wrong private key password")
            additional = tuple(c.certificate for c in keystore.additional_certs)
            return KeyMaterial(
                private_key=keystore.key,
                public_key=keystore.cert.certificate.public_key(),
                certificate=keystore.cert.certificate,
                additional_certificates=additional,
            )
        if any(matches(c) for c in keystore.additional_certs):
            raise KeyResolutionError(f"Keystore entry {descriptor.key_alias} is not a private key entry")
        raise KeyResolutionError(f"Alias {descriptor.key_alias} not found in keystore {descriptor.path}")

    def _resolve_jks(self, data: bytes, descriptor: CertificateDescriptor) -> KeyMaterial:
        try:
            keystore = jks.KeyStore.loads(data, ensure_str(descriptor.keystore_password), try_decrypt_keys=False)
        except jks.util.KeystoreException as e:
            raise KeyResolutionError(f"Unable to unlock keystore {descriptor.path}: {e}") from e

        alias = descriptor.key_alias.lower()
        entries = {name.lower(): entry for name, entry in keystore.private_keys.items()}
        if alias not in entries:
            if any(name.lower() == alias for name in [*keystore.certs, *keystore.secret_keys]):
                raise KeyResolutionError(f"Keystore entry {descriptor.key_alias} is not a private key entry")
            raise KeyResolutionError(f"Alias {descriptor.key_alias} not found in keystore {descriptor.path}")

        entry = entries[alias]
        try:
            entry.decrypt(ensure_str(descriptor.private_key_password))
        except jks.util.DecryptionFailureException as e:
            raise KeyResolutionError(f"Unable to recover key {descriptor.key_alias}: wrong private key password") from e
        try:
            private_key = load_der_private_key(entry.pkey_pkcs8, password=None)
            cert_chain = [x509.load_der_x509_certificate(cert) for _, cert in entry.cert_chain]
        except ValueError as e:
            raise KeyResolutionError(f"Unable to load keystore entry {descriptor.key_alias}: {e}") from e
        if not cert_chain:
            raise KeyResolutionError(f"Keystore entry {descriptor.key_alias} has no certificate")
        return KeyMaterial(
            private_key=private_key,
            public_key=cert_chain[0].public_key(),
            certificate=cert_chain[0],
            additional_certificates=tuple(cert_chain[1:]),
        )
