import logging
from typing import Any, Mapping, Optional, Union

from cryptography.hazmat.primitives.asymmetric import dsa, ec, rsa
from lxml import etree

from .algorithms import DigestAlgorithm, SignatureMethod
from .exceptions import ConfigurationError, InvalidInput, SelectorNoMatchError
from .keystore import CertificateDescriptor, KeyMaterialResolver
from .signer import SignatureParameters, XMLSigner
from .verifier import SignatureConfiguration, XMLVerifier

logger = logging.getLogger(__name__)

__all__ = ["SignatureEngine", "SignatureParameters"]


class SignatureEngine:
    """
    Implements ``generate-signature`` and ``validate-signature`` on top of :class:`XMLSigner` and
    :class:`XMLVerifier`. An engine holds configuration only; every call resolves its own key material and builds its
    own signer or verifier, so one engine can be shared between threads.

    :param legacy_sha1:
        Accept SHA1-based digest and signature methods when generating and validating. See `SHA1 deprecation`_.
    """

    def __init__(self, legacy_sha1: bool = False):
        self.legacy_sha1 = legacy_sha1

    @property
    def verifier_config(self) -> SignatureConfiguration:
        if self.legacy_sha1:
            return SignatureConfiguration(
                signature_methods=frozenset(SignatureMethod), digest_algorithms=frozenset(DigestAlgorithm)
            )
        return SignatureConfiguration()

    def generate_signature(
        self,
        input_node,
        parameters: Optional[Union[SignatureParameters, Mapping[str, Any]]] = None,
        certificate=None,
        hmac_key: Optional[Union[str, bytes]] = None,
    ) -> etree._Element:
        """
        Sign **input_node** and return the signed document (enveloped) or the signature element (enveloping and
        detached).

        :param input_node: An lxml or ElementTree element, or XML text.
        :param parameters: A :class:`SignatureParameters`, or a mapping of its field names.
        :param certificate:
            The keystore entry to sign with: a :class:`CertificateDescriptor`, a mapping of its fields, or a
            ``<digital-certificate>`` element. Without one, the document is signed with a freshly generated key pair
            of the signature method's family and the public key is embedded as a KeyValue.
        :param hmac_key: The shared secret for HMAC signature methods.
        :raises: :class:`xmlcrypto.exceptions.KeyResolutionError` if the keystore entry cannot be loaded,
            :class:`xmlcrypto.exceptions.SelectorNoMatchError` if the selector matches nothing, and other
            :class:`xmlcrypto.exceptions.InvalidInput` subclasses for bad parameters.
        """
        if parameters is None:
            parameters = SignatureParameters()
        elif not isinstance(parameters, SignatureParameters):
            parameters = SignatureParameters(**{k.replace("-", "_"): v for k, v in parameters.items()})

        signer = XMLSigner(
            method=parameters.placement,
            signature_algorithm=parameters.signature_algorithm,
            digest_algorithm=parameters.digest_algorithm,
            c14n_algorithm=parameters.c14n_algorithm,
            namespace_prefix=parameters.namespace_prefix,
            allow_sha1=self.legacy_sha1,
        )
        family = signer.sign_alg.family
        cert_chain = None
        if family == "HMAC":
            if not hmac_key:
                raise ConfigurationError(f"{signer.sign_alg.name} signatures require the hmac_key argument")
            key = hmac_key
        elif certificate is not None:
            material = KeyMaterialResolver().resolve(self._get_descriptor(certificate))
            key, cert_chain = material.private_key, material.cert_chain
        else:
            logger.debug("No certificate given, generating an ephemeral %s key", family)
            key = self._generate_key(family)

        try:
            root = signer.get_root(input_node)
        except etree.XMLSyntaxError as e:
            raise InvalidInput(f"Unable to parse the document to sign: {e}") from e

        signed = signer.sign(
            root,
            key=key,
            cert=cert_chain,
            selector=parameters.selector,
            selector_namespaces=parameters.selector_namespaces,
        )
        logger.debug("Generated %s signature with %s", parameters.placement.name, parameters.signature_algorithm.name)
        return signed

    def validate_signature(
        self,
        document,
        x509_cert=None,
        detached_content=None,
        hmac_key: Optional[Union[str, bytes]] = None,
    ) -> bool:
        """
        Return ``True`` if the signature in **document** matches its content and key, ``False`` if the content or the
        signature value was altered.

        :param document: Signed document, or a signature element for enveloping and detached signatures.
        :param x509_cert: A trusted certificate to verify against instead of the embedded key material.
        :param detached_content: The content a detached signature refers to.
        :param hmac_key: The shared secret for HMAC signature methods.
        :raises: :class:`xmlcrypto.exceptions.MalformedSignatureError` if no recognizable signature is present, and
            other :class:`xmlcrypto.exceptions.InvalidInput` subclasses for disallowed algorithms or mismatched keys.
        """
        verifier = XMLVerifier(config=self.verifier_config)
        try:
            valid = verifier.verify(document, x509_cert=x509_cert, hmac_key=hmac_key, detached_content=detached_content)
        except SelectorNoMatchError as e:
            logger.debug("Signed nodes are missing from the document: %s", e)
            return False
        logger.debug("Signature validation result: %s", valid)
        return valid

    def _get_descriptor(self, certificate) -> CertificateDescriptor:
        if isinstance(certificate, CertificateDescriptor):
            return certificate
        elif isinstance(certificate, Mapping):
            return CertificateDescriptor.from_mapping(certificate)
        try:
            return CertificateDescriptor.from_xml(certificate)
        except etree.XMLSyntaxError as e:
            raise ConfigurationError(f"Unable to parse certificate descriptor: {e}") from e

    def _generate_key(self, family: str):
        if family == "DSA":
            return dsa.generate_private_key(key_size=2048)
        elif family == "ECDSA":
            return ec.generate_private_key(ec.SECP256R1())
        return rsa.generate_private_key(public_exponent=65537, key_size=2048)

