import logging
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import dsa, ec, rsa
from lxml import etree

from .algorithms import CanonicalizationMethod, DigestAlgorithm, SignatureConstructionMethod, SignatureMethod
from .exceptions import (
    ConfigurationError,
    InvalidInput,
    KeyFormatError,
    MalformedSignatureError,
    UnsupportedAlgorithmError,
)
from .primitives import DigestSigner
from .processor import XMLSignatureProcessor
from .signer import SignatureParameters
from .util import _remove_sig, add_pem_header, b64decode_field, bytes_to_long, ds_tag, ensure_bytes, namespaces

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignatureConfiguration:
    """
    A container holding signature settings that will be used to assert properties of the signature.
    """

    require_x509: bool = False
    """
    If ``True``, only signatures that carry an X.509 certificate (or that are checked against one passed to
    :meth:`XMLVerifier.verify`) are accepted. If ``False``, a KeyValue embedded by a signer without a certificate is
    used as well.
    """

    location: str = ".//"
    """
    XPath location where the signature tag will be expected. By default the signature can be anywhere in the document.
    A document whose root element is the signature (enveloping and detached signatures) is always accepted.
    """

    signature_methods: FrozenSet[SignatureMethod] = frozenset(sm for sm in SignatureMethod if "SHA1" not in sm.name)
    """
    Set of acceptable signature methods (signature algorithms). Any signature generated using an algorithm not listed
    here is rejected with :class:`xmlcrypto.exceptions.UnsupportedAlgorithmError`.
    """

    digest_algorithms: FrozenSet[DigestAlgorithm] = frozenset(da for da in DigestAlgorithm if "SHA1" not in da.name)
    """
    Set of acceptable digest algorithms. Any reference digested using an algorithm not listed here is rejected with
    :class:`xmlcrypto.exceptions.UnsupportedAlgorithmError`.
    """


@dataclass(frozen=True)
class ExtractedSignature:
    """
    Everything read back from a signature structure by :meth:`XMLVerifier.extract`.
    """

    parameters: SignatureParameters
    "The canonicalization, digest and signature methods, the prefix, placement and selector recorded in the signature"

    digest_value: bytes
    signature_value: bytes

    signed_info_c14n: bytes
    "The canonical bytes of SignedInfo, which are what the signature value covers"

    referenced_content: List[etree._Element]
    "The nodes the reference points at, with the enveloped signature removed and the selector applied"

    reference_c14n_algorithm: CanonicalizationMethod
    reference_inclusive_ns_prefixes: Optional[List[str]]

    signature_xml: etree._Element
    "The signature element parsed as XML"

    certificate_ref: List[x509.Certificate] = field(default_factory=list)
    "Certificates from X509Data, signing certificate first"

    key_value: Optional[etree._Element] = None


class XMLVerifier(XMLSignatureProcessor):
    """
    Create a new XML Signature Verifier object, which can be used to verify multiple pieces of data.

    :param config: A :class:`SignatureConfiguration` restricting the accepted signatures.
    """

    _default_reference_c14n_method = CanonicalizationMethod.CANONICAL_XML_1_0

    def __init__(self, config: Optional[SignatureConfiguration] = None):
        self.config = config or SignatureConfiguration()

    def _get_signature(self, root):
        if root.tag == ds_tag("Signature"):
            return root
        else:
            return self._find(root, "Signature", xpath=self.config.location)

    def _get_algorithm(self, element):
        algorithm = element.get("Algorithm")
        if not algorithm:
            raise MalformedSignatureError(f"Expected an Algorithm attribute on {element.tag}")
        return algorithm

    def _get_inclusive_ns_prefixes(self, transform_node):
        inclusive_namespaces = transform_node.find("./ec:InclusiveNamespaces[@PrefixList]", namespaces=namespaces)
        if inclusive_namespaces is None:
            return None
        else:
            return inclusive_namespaces.get("PrefixList").split(" ")

    def _get_long(self, element, query, require=True):
        result = self._find(element, query, require=require)
        if result is not None:
            result = bytes_to_long(b64decode_field(result.text, query))
        return result

    def extract(self, data, detached_content=None) -> ExtractedSignature:
        """
        Locate the signature in **data** and read back everything needed to validate it.

        :param data: Signed document, or the signature itself for enveloping and detached signatures.
        :param detached_content: The content a detached signature refers to.
        :raises: :class:`xmlcrypto.exceptions.MalformedSignatureError` if no recognizable signature is present or a
            required element is missing, :class:`xmlcrypto.exceptions.UnsupportedAlgorithmError` if it names an
            unknown or disallowed algorithm.
        """
        try:
            root = self.get_root(data)
        except etree.XMLSyntaxError as e:
            raise MalformedSignatureError(f"Unable to parse signed document: {e}") from e
        signature_ref = self._get_signature(root)
        signature = self._fromstring(self._tostring(signature_ref))

        signed_info = self._find(signature, "SignedInfo")
        c14n_method = self._find(signed_info, "CanonicalizationMethod")
        c14n_algorithm = CanonicalizationMethod(self._get_algorithm(c14n_method))
        inclusive_ns_prefixes = self._get_inclusive_ns_prefixes(c14n_method)
        signature_method = self._find(signed_info, "SignatureMethod")
        signature_alg = SignatureMethod(self._get_algorithm(signature_method))
        if signature_alg not in self.config.signature_methods:
            raise UnsupportedAlgorithmError(f"Signature method {signature_alg.name} forbidden by configuration")
        signature_value = b64decode_field(self._find(signature, "SignatureValue").text, "SignatureValue")

        references = self._findall(signed_info, "Reference")
        if len(references) != 1:
            raise MalformedSignatureError(f"Expected exactly one Reference, found {len(references)}")
        reference = references[0]
        digest_alg = DigestAlgorithm(self._get_algorithm(self._find(reference, "DigestMethod")))
        if digest_alg not in self.config.digest_algorithms:
            raise UnsupportedAlgorithmError(f"Digest algorithm {digest_alg.name} forbidden by configuration")
        digest_value = b64decode_field(self._find(reference, "DigestValue").text, "DigestValue")

        certificates = []
        for x509_certificate in self._findall(signature, "X509Certificate", xpath="ds:KeyInfo/ds:X509Data/"):
            der = b64decode_field(x509_certificate.text, "X509Certificate")
            try:
                certificates.append(x509.load_der_x509_certificate(der))
            except ValueError as e:
                raise MalformedSignatureError(f"Unable to load embedded certificate: {e}") from e
        key_value = self._find(signature, "KeyValue", require=False, xpath="ds:KeyInfo/")

        transforms_node = self._find(reference, "Transforms", require=False)
        transforms = self._findall(transforms_node, "Transform") if transforms_node is not None else []
        placement, payload = self._dereference(root, reference, transforms, detached_content)

        selector, selector_namespaces = None, None
        reference_c14n_algorithm, reference_inclusive_ns_prefixes = self._default_reference_c14n_method, None
        for transform in transforms:
            algorithm = self._get_algorithm(transform)
            if algorithm == SignatureConstructionMethod.enveloped.value:
                continue
            elif algorithm == namespaces.dsig_xpath:
                selector, selector_namespaces = self._get_xpath_filter(transform)
            else:
                reference_c14n_algorithm = CanonicalizationMethod(algorithm)
                reference_inclusive_ns_prefixes = self._get_inclusive_ns_prefixes(transform)

        if selector is not None:
            referenced_content = [self.get_root(n) for n in self._select(payload, selector, selector_namespaces)]
        else:
            referenced_content = [self.get_root(payload)]

        parameters = SignatureParameters(
            c14n_algorithm=c14n_algorithm,
            digest_algorithm=digest_alg,
            signature_algorithm=signature_alg,
            namespace_prefix=signature.prefix,
            placement=placement,
            selector=selector,
            selector_namespaces=selector_namespaces,
        )
        logger.debug("Extracted %s signature: %s", placement.name, parameters)
        return ExtractedSignature(
            parameters=parameters,
            digest_value=digest_value,
            signature_value=signature_value,
            signed_info_c14n=self._c14n(signed_info, c14n_algorithm, inclusive_ns_prefixes=inclusive_ns_prefixes),
            referenced_content=referenced_content,
            reference_c14n_algorithm=reference_c14n_algorithm,
            reference_inclusive_ns_prefixes=reference_inclusive_ns_prefixes,
            signature_xml=signature,
            certificate_ref=certificates,
            key_value=key_value,
        )

    def _dereference(self, root, reference, transforms, detached_content):
        copied_root = self._fromstring(self._tostring(root))
        copied_signature = self._get_signature(copied_root)
        algorithms = [transform.get("Algorithm") for transform in transforms]

        if SignatureConstructionMethod.enveloped.value in algorithms:
            if copied_signature.getparent() is None:
                raise MalformedSignatureError("An enveloped signature cannot be the document element")
            _remove_sig(copied_signature)
            return SignatureConstructionMethod.enveloped, self._resolve_reference(copied_root, reference)

        if detached_content is not None:
            try:
                content_root = self.get_root(detached_content)
            except etree.XMLSyntaxError as e:
                raise MalformedSignatureError(f"Unable to parse detached content: {e}") from e
            return SignatureConstructionMethod.detached, self._resolve_reference(content_root, reference)

        if reference.get("URI") == "":
            raise MalformedSignatureError("The signed content of a detached signature must be supplied")
        payload = self._resolve_reference(copied_root, reference)
        if payload.tag == ds_tag("Object") and payload.getparent() is copied_signature:
            return SignatureConstructionMethod.enveloping, payload
        return SignatureConstructionMethod.detached, payload

    def _get_xpath_filter(self, transform):
        xpath = self._find(transform, "dsig_xpath:XPath")
        if xpath.get("Filter") != "intersect":
            raise UnsupportedAlgorithmError(f"Unsupported XPath filter type: {xpath.get('Filter')}")
        if not xpath.text:
            raise MalformedSignatureError("XPath filter transform has no expression")
        selector_namespaces = {
            prefix: uri for prefix, uri in xpath.nsmap.items() if prefix and uri != namespaces.dsig_xpath
        }
        return xpath.text, selector_namespaces

    def verify(
        self,
        data,
        *,
        x509_cert: Optional[Union[str, bytes, x509.Certificate]] = None,
        hmac_key: Optional[Union[str, bytes]] = None,
        detached_content=None,
    ) -> bool:
        """
        Verify the XML signature supplied in the data. The digest of the referenced content is checked first, then the
        signature value over SignedInfo. Either mismatch returns ``False``.

        :param data: Signature data to verify
        :type data: String, file-like object, or XML ElementTree Element API compatible object
        :param x509_cert:
            A trusted certificate (PEM text, or a :class:`cryptography.x509.Certificate`) to verify against instead of
            the key material embedded in the signature.
        :param hmac_key: The shared secret for HMAC signatures.
        :param detached_content: The content a detached signature refers to.
        :raises: :class:`xmlcrypto.exceptions.InvalidInput` subclasses for malformed signatures, disallowed algorithms
            and keys that do not match the signature method.
        """
        extracted = self.extract(data, detached_content=detached_content)
        params = extracted.parameters

        payload_c14n = self._c14n(
            extracted.referenced_content,
            algorithm=extracted.reference_c14n_algorithm,
            inclusive_ns_prefixes=extracted.reference_inclusive_ns_prefixes,
        )
        if self._get_digest(payload_c14n, params.digest_algorithm) != extracted.digest_value:
            logger.debug("Digest mismatch for %s", params.digest_algorithm.name)
            return False

        key = self._get_verification_key(extracted, x509_cert=x509_cert, hmac_key=hmac_key)
        signer = DigestSigner()
        return signer.verify(extracted.signed_info_c14n, extracted.signature_value, key, params.signature_algorithm)

    def _get_verification_key(self, extracted: ExtractedSignature, x509_cert, hmac_key):
        signature_alg = extracted.parameters.signature_algorithm
        if signature_alg.family == "HMAC":
            if hmac_key is None:
                raise ConfigurationError(f"{signature_alg.name} signatures require the hmac_key argument")
            return hmac_key
        if x509_cert is not None:
            return self._load_certificate(x509_cert)
        if extracted.certificate_ref:
            return extracted.certificate_ref[0]
        if self.config.require_x509:
            raise InvalidInput("Expected a X.509 certificate based signature")
        if extracted.key_value is None:
            raise MalformedSignatureError("Expected to find either KeyValue or X509Data XML element in KeyInfo")
        return self._get_public_key(extracted.key_value, signature_alg)

    def _load_certificate(self, cert):
        if isinstance(cert, x509.Certificate):
            return cert
        try:
            return x509.load_pem_x509_certificate(ensure_bytes(add_pem_header(cert)))
        except ValueError as e:
            raise KeyFormatError(f"Unable to load certificate: {e}") from e

    def _get_public_key(self, key_value, signature_alg: SignatureMethod):
        """
        Rebuild the public key from a KeyValue (see https://www.w3.org/TR/xmldsig-core2/#sec-KeyValue).
        """
        if signature_alg.family == "ECDSA":
            ec_key_value = self._find(key_value, "dsig11:ECKeyValue")
            named_curve = self._find(ec_key_value, "dsig11:NamedCurve")
            public_key = self._find(ec_key_value, "dsig11:PublicKey")
            key_data = b64decode_field(public_key.text, "PublicKey")[1:]
            x = bytes_to_long(key_data[: len(key_data) // 2])
            y = bytes_to_long(key_data[len(key_data) // 2 :])
            if named_curve.get("URI") not in self.known_ecdsa_curves:
                raise UnsupportedAlgorithmError(f"Unsupported named curve: {named_curve.get('URI')}")
            curve_class = self.known_ecdsa_curves[named_curve.get("URI")]
            ecpn = ec.EllipticCurvePublicNumbers(x=x, y=y, curve=curve_class())  # type: ignore
            try:
                return ecpn.public_key()
            except ValueError as e:
                raise MalformedSignatureError(f"Invalid ECKeyValue: {e}") from e
        elif signature_alg.family == "DSA":
            dsa_key_value = self._find(key_value, "DSAKeyValue")
            p = self._get_long(dsa_key_value, "P")
            q = self._get_long(dsa_key_value, "Q")
            g = self._get_long(dsa_key_value, "G")
            y = self._get_long(dsa_key_value, "Y")
            dsapn = dsa.DSAPublicNumbers(y=y, parameter_numbers=dsa.DSAParameterNumbers(p=p, q=q, g=g))
            return dsapn.public_key()
        else:
            rsa_key_value = self._find(key_value, "RSAKeyValue")
            modulus = self._get_long(rsa_key_value, "Modulus")
            exponent = self._get_long(rsa_key_value, "Exponent")
            return rsa.RSAPublicNumbers(e=exponent, n=modulus).public_key()
