import re
from enum import Enum
from typing import Callable, Dict, Type, Union

from cryptography.hazmat.primitives import hashes

from .exceptions import UnsupportedAlgorithmError


def _normalize_name(name: str) -> str:
    return re.sub(r"[\s_-]", "", name).upper()


class InvalidInputErrorMixin:
    @classmethod
    def _missing_(cls, value):
        raise UnsupportedAlgorithmError(f"Unrecognized {cls.__name__}: {value}")

    def __repr__(self):
        return f"{self.__class__.__name__}.{self.name}"  # type: ignore


class NameLookupMixin:
    @classmethod
    def from_name(cls, name):
        """
        Look up a member by its value (URI), its member name, its URI fragment or one of its short aliases. Names are
        matched ignoring case, dashes and underscores, so ``"SHA-256"``, ``"sha256"`` and ``"SHA256"`` are equivalent.
        """
        if isinstance(name, cls):
            return name
        if not isinstance(name, str) or name == "":
            raise UnsupportedAlgorithmError(f"Unrecognized {cls.__name__}: {name!r}")
        wanted = _normalize_name(name)
        for member in cls:  # type: ignore
            if member.value == name or wanted in (_normalize_name(member.name), _normalize_name(member.value)):
                return member
        for alias, member in name_aliases.get(cls, {}).items():
            if _normalize_name(alias) == wanted:
                return member
        for member in cls:  # type: ignore
            if "#" in member.value and _normalize_name(member.value.rpartition("#")[2]) == wanted:
                return member
        raise UnsupportedAlgorithmError(f"Unrecognized {cls.__name__}: {name}")


class SignatureConstructionMethod(NameLookupMixin, InvalidInputErrorMixin, Enum):
    """
    An enumeration of signature placement modes, used to specify where the signature goes relative to the content it
    signs. See the list of signature types under `XML Signature Syntax and Processing Version 2.0, Definitions
    <http://www.w3.org/TR/xmldsig-core2/#sec-Definitions>`_.
    """

    enveloped = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"
    """
    The signature is appended to the signed element, and excised from it by a transform before digesting. This is the
    default.
    """

    enveloping = "enveloping-signature"
    """
    The signed content is wrapped in an Object element inside the signature itself.
    """

    detached = "detached-signature"
    """
    The signature is returned on its own and references content kept outside of it. The content has to be supplied
    again when validating.
    """


class DigestAlgorithm(NameLookupMixin, InvalidInputErrorMixin, Enum):
    """
    An enumeration of digest algorithms. See the `Algorithm Identifiers and Implementation Requirements
    <http://www.w3.org/TR/xmldsig-core1/#sec-AlgID>`_ section of the XML Signature 1.1 standard for details.
    """

    SHA224 = "http://www.w3.org/2001/04/xmldsig-more#sha224"
    SHA384 = "http://www.w3.org/2001/04/xmldsig-more#sha384"
    SHA256 = "http://www.w3.org/2001/04/xmlenc#sha256"
    SHA512 = "http://www.w3.org/2001/04/xmlenc#sha512"
    SHA3_224 = "http://www.w3.org/2007/05/xmldsig-more#sha3-224"
    SHA3_256 = "http://www.w3.org/2007/05/xmldsig-more#sha3-256"
    SHA3_384 = "http://www.w3.org/2007/05/xmldsig-more#sha3-384"
    SHA3_512 = "http://www.w3.org/2007/05/xmldsig-more#sha3-512"

    SHA1 = "http://www.w3.org/2000/09/xmldsig#sha1"
    "See `SHA1 deprecation`_."

    @property
    def implementation(self) -> Callable:
        """
        The cryptography callable that implements the specified algorithm.
        """
        return digest_algorithm_implementations[self]


class SignatureMethod(NameLookupMixin, InvalidInputErrorMixin, Enum):
    """
    An enumeration of signature methods (also referred to as signature algorithms). See the
    `Algorithm Identifiers and Implementation Requirements <http://www.w3.org/TR/xmldsig-core1/#sec-AlgID>`_ section of
    the XML Signature 1.1 standard for details.
    """

    RSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"
    """
    The RSASSA-PKCS1-v1_5 algorithm described in RFC 3447. This is the default, most widely supported signature method.
    """

    RSA_SHA224 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha224"
    RSA_SHA384 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha384"
    RSA_SHA512 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha512"
    ECDSA_SHA224 = "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha224"
    ECDSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha256"
    ECDSA_SHA384 = "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha384"
    ECDSA_SHA512 = "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha512"
    DSA_SHA256 = "http://www.w3.org/2009/xmldsig11#dsa-sha256"
    HMAC_SHA224 = "http://www.w3.org/2001/04/xmldsig-more#hmac-sha224"
    HMAC_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#hmac-sha256"
    HMAC_SHA384 = "http://www.w3.org/2001/04/xmldsig-more#hmac-sha384"
    HMAC_SHA512 = "http://www.w3.org/2001/04/xmldsig-more#hmac-sha512"
    SHA256_RSA_MGF1 = "http://www.w3.org/2007/05/xmldsig-more#sha256-rsa-MGF1"
    SHA384_RSA_MGF1 = "http://www.w3.org/2007/05/xmldsig-more#sha384-rsa-MGF1"
    SHA512_RSA_MGF1 = "http://www.w3.org/2007/05/xmldsig-more#sha512-rsa-MGF1"

    DSA_SHA1 = "http://www.w3.org/2000/09/xmldsig#dsa-sha1"
    """
    _`SHA1 deprecation`: SHA1 based algorithms are not secure for use in digital signatures. They are included for
    compatibility with hosts that still name them (``RSA_SHA1`` and ``DSA_SHA1`` are the legacy EXPath defaults) and
    are refused unless the engine is created with ``SignatureEngine(legacy_sha1=True)``.
    """
    HMAC_SHA1 = "http://www.w3.org/2000/09/xmldsig#hmac-sha1"
    "See `SHA1 deprecation`_."
    RSA_SHA1 = "http://www.w3.org/2000/09/xmldsig#rsa-sha1"
    "See `SHA1 deprecation`_."
    ECDSA_SHA1 = "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha1"
    "See `SHA1 deprecation`_."

    @property
    def family(self) -> str:
        """
        The key family required by this method: ``RSA``, ``RSA_PSS``, ``DSA``, ``ECDSA`` or ``HMAC``.
        """
        if self.name.endswith("_RSA_MGF1"):
            return "RSA_PSS"
        return self.name.partition("_")[0]


class CanonicalizationMethod(NameLookupMixin, InvalidInputErrorMixin, Enum):
    """
    An enumeration of XML canonicalization methods (also referred to as canonicalization algorithms). Besides the URIs,
    the short names ``inclusive``, ``exclusive``, ``inclusive-with-comments`` and ``exclusive-with-comments`` are
    accepted by :meth:`from_name`.
    """

    CANONICAL_XML_1_0 = "http://www.w3.org/TR/2001/REC-xml-c14n-20010315"
    CANONICAL_XML_1_0_WITH_COMMENTS = "http://www.w3.org/TR/2001/REC-xml-c14n-20010315#WithComments"
    CANONICAL_XML_1_1 = "http://www.w3.org/2006/12/xml-c14n11"
    CANONICAL_XML_1_1_WITH_COMMENTS = "http://www.w3.org/2006/12/xml-c14n11#WithComments"
    EXCLUSIVE_XML_CANONICALIZATION_1_0 = "http://www.w3.org/2001/10/xml-exc-c14n#"
    EXCLUSIVE_XML_CANONICALIZATION_1_0_WITH_COMMENTS = "http://www.w3.org/2001/10/xml-exc-c14n#WithComments"

    @property
    def exclusive(self) -> bool:
        return self.value.startswith("http://www.w3.org/2001/10/xml-exc-c14n#")

    @property
    def with_comments(self) -> bool:
        return self.value.endswith("#WithComments")


class CipherMode(NameLookupMixin, InvalidInputErrorMixin, Enum):
    symmetric = "symmetric"
    asymmetric = "asymmetric"


class CipherAlgorithm(NameLookupMixin, InvalidInputErrorMixin, Enum):
    """
    An enumeration of the ciphers available to :class:`xmlcrypto.CipherEngine`.
    """

    AES_GCM = "AES-GCM"
    "AES in Galois/Counter mode with a 96 bit random nonce. Accepts 128, 192 and 256 bit keys."

    CHACHA20_POLY1305 = "ChaCha20-Poly1305"
    "ChaCha20 with a Poly1305 authenticator. Requires a 256 bit key."

    RSA_OAEP = "RSA"
    "RSA with OAEP padding (MGF1 and SHA-256)."

    RSA_PKCS1 = "RSA-PKCS1"
    "RSA with PKCS #1 v1.5 encryption padding."

    @property
    def mode(self) -> CipherMode:
        return CipherMode.asymmetric if self.name.startswith("RSA_") else CipherMode.symmetric


name_aliases: Dict[type, Dict[str, Enum]] = {
    CanonicalizationMethod: {
        "inclusive": CanonicalizationMethod.CANONICAL_XML_1_0,
        "inclusive-with-comments": CanonicalizationMethod.CANONICAL_XML_1_0_WITH_COMMENTS,
        "inclusive-1.1": CanonicalizationMethod.CANONICAL_XML_1_1,
        "inclusive-1.1-with-comments": CanonicalizationMethod.CANONICAL_XML_1_1_WITH_COMMENTS,
        "exclusive": CanonicalizationMethod.EXCLUSIVE_XML_CANONICALIZATION_1_0,
        "exclusive-with-comments": CanonicalizationMethod.EXCLUSIVE_XML_CANONICALIZATION_1_0_WITH_COMMENTS,
    },
    CipherAlgorithm: {
        "AES": CipherAlgorithm.AES_GCM,
        "ChaCha20": CipherAlgorithm.CHACHA20_POLY1305,
        "RSA-OAEP": CipherAlgorithm.RSA_OAEP,
    },
}

digest_algorithm_implementations: Dict[Union[DigestAlgorithm, SignatureMethod], Type[hashes.HashAlgorithm]] = {
    DigestAlgorithm.SHA1: hashes.SHA1,
    DigestAlgorithm.SHA224: hashes.SHA224,
    DigestAlgorithm.SHA384: hashes.SHA384,
    DigestAlgorithm.SHA256: hashes.SHA256,
    DigestAlgorithm.SHA512: hashes.SHA512,
    DigestAlgorithm.SHA3_224: hashes.SHA3_224,
    DigestAlgorithm.SHA3_256: hashes.SHA3_256,
    DigestAlgorithm.SHA3_384: hashes.SHA3_384,
    DigestAlgorithm.SHA3_512: hashes.SHA3_512,
    SignatureMethod.DSA_SHA1: hashes.SHA1,
    SignatureMethod.HMAC_SHA1: hashes.SHA1,
    SignatureMethod.RSA_SHA1: hashes.SHA1,
    SignatureMethod.ECDSA_SHA1: hashes.SHA1,
    SignatureMethod.ECDSA_SHA224: hashes.SHA224,
    SignatureMethod.ECDSA_SHA256: hashes.SHA256,
    SignatureMethod.ECDSA_SHA384: hashes.SHA384,
    SignatureMethod.ECDSA_SHA512: hashes.SHA512,
    SignatureMethod.HMAC_SHA224: hashes.SHA224,
    SignatureMethod.HMAC_SHA256: hashes.SHA256,
    SignatureMethod.HMAC_SHA384: hashes.SHA384,
    SignatureMethod.HMAC_SHA512: hashes.SHA512,
    SignatureMethod.RSA_SHA224: hashes.SHA224,
    SignatureMethod.RSA_SHA256: hashes.SHA256,
    SignatureMethod.RSA_SHA384: hashes.SHA384,
    SignatureMethod.RSA_SHA512: hashes.SHA512,
    SignatureMethod.DSA_SHA256: hashes.SHA256,
    SignatureMethod.SHA256_RSA_MGF1: hashes.SHA256,
    SignatureMethod.SHA384_RSA_MGF1: hashes.SHA384,
    SignatureMethod.SHA512_RSA_MGF1: hashes.SHA512,
}
