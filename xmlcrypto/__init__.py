"""
Use :class:`xmlcrypto.SignatureEngine` to generate and validate XML Signatures over documents or selected subtrees,
and :class:`xmlcrypto.CipherEngine` to encrypt and decrypt text payloads. :class:`xmlcrypto.XMLSigner` and
:class:`xmlcrypto.XMLVerifier` give direct access to the signature layer.
"""

from .signer import XMLSigner, SignatureParameters
from .verifier import XMLVerifier, ExtractedSignature, SignatureConfiguration
from .engine import SignatureEngine
from .cipher import CipherEngine
from .c14n import Canonicalizer
from .keystore import CertificateDescriptor, KeyMaterial, KeyMaterialResolver, KeystoreType
from .primitives import DigestSigner, compute_hash, compute_hmac
from .algorithms import (
    CanonicalizationMethod,
    CipherAlgorithm,
    CipherMode,
    DigestAlgorithm,
    SignatureConstructionMethod,
    SignatureMethod,
)
from .exceptions import (
    ConfigurationError,
    DecryptionError,
    InvalidInput,
    KeyAlgorithmMismatchError,
    KeyFormatError,
    KeyResolutionError,
    MalformedSignatureError,
    SelectorNoMatchError,
    UnsupportedAlgorithmError,
    XMLCryptoException,
)
from .processor import XMLSignatureProcessor
from .util import namespaces

methods = SignatureConstructionMethod
