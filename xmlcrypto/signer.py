import logging
import re
from base64 import b64encode
from dataclasses import dataclass, fields
from typing import Dict, List, Mapping, Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import dsa, ec, rsa
from cryptography.hazmat.primitives.serialization import Encoding, load_pem_private_key
from lxml.etree import Element, QName, SubElement, _Element

from .algorithms import CanonicalizationMethod, DigestAlgorithm, SignatureConstructionMethod, SignatureMethod
from .exceptions import InvalidInput, KeyAlgorithmMismatchError, KeyFormatError, UnsupportedAlgorithmError
from .primitives import DigestSigner, private_key_types
from .processor import XMLSignatureProcessor
from .util import (
    SigningSettings,
    bits_to_bytes_unit,
    ds_tag,
    dsig11_tag,
    dsig_xpath_tag,
    ec_tag,
    ensure_bytes,
    long_to_bytes,
    namespaces,
)

logger = logging.getLogger(__name__)

ncname_regexp = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]*$")


@dataclass(frozen=True)
class SignatureParameters:
    """
    The options of one signature generation. Each algorithm field accepts an enum member, its URI or a short name (see
    :meth:`xmlcrypto.algorithms.NameLookupMixin.from_name`); ``None`` or an empty string selects the default, so the
    positional form ``SignatureParameters("exclusive", "SHA512", "RSA_SHA1", "myPrefix", "enveloped", "/a/n")``
    mirrors the EXPath ``crypto:generate-signature`` argument list.
    """

    c14n_algorithm: Union[CanonicalizationMethod, str] = CanonicalizationMethod.CANONICAL_XML_1_0
    digest_algorithm: Union[DigestAlgorithm, str] = DigestAlgorithm.SHA256
    signature_algorithm: Union[SignatureMethod, str] = SignatureMethod.RSA_SHA256
    namespace_prefix: Optional[str] = None
    placement: Union[SignatureConstructionMethod, str] = SignatureConstructionMethod.enveloped
    selector: Optional[str] = None
    selector_namespaces: Optional[Mapping[str, str]] = None

    def __post_init__(self):
        lookups = {
            "c14n_algorithm": CanonicalizationMethod,
            "digest_algorithm": DigestAlgorithm,
            "signature_algorithm": SignatureMethod,
            "placement": SignatureConstructionMethod,
        }
        for f in fields(self):
            if f.name in lookups:
                value = getattr(self, f.name)
                if value is None or value == "":
                    value = f.default
                object.__setattr__(self, f.name, lookups[f.name].from_name(value))
        if not self.namespace_prefix:
            object.__setattr__(self, "namespace_prefix", None)
        if not self.selector:
            object.__setattr__(self, "selector", None)
        selector_namespaces = dict(self.selector_namespaces or {})
        for prefix, uri in selector_namespaces.items():
            if not prefix or not isinstance(prefix, str):
                raise InvalidInput(f"Selector namespace prefixes must be non-empty strings, got {prefix!r} for {uri}")
        object.__setattr__(self, "selector_namespaces", selector_namespaces)


class XMLSigner(XMLSignatureProcessor):
    """
    Create a new XML Signature Signer object, which can be used to hold configuration information and sign multiple
    pieces of data.

    :param method:
        ``enveloped``, ``enveloping``, or ``detached``. See :class:`SignatureConstructionMethod` for details.
    :param signature_algorithm:
        Algorithm that will be used to generate the signature. See :class:`SignatureMethod` for the list of algorithm
        IDs supported.
    :param digest_algorithm:
        Algorithm that will be used to hash the data during signature generation. See :class:`DigestAlgorithm` for the
        list of algorithm IDs supported.
    :param c14n_algorithm:
        Algorithm that will be used to canonicalize (serialize in a reproducible way) the XML that is signed. See
        :class:`CanonicalizationMethod` for the list of algorithm IDs supported.
    :param namespace_prefix:
        Prefix bound to the XML Signature namespace on the generated elements. By default the signature elements are
        placed in the default namespace. An enveloping signature falls back to the ``ds`` prefix when the wrapped
        content has elements without a namespace, which a default namespace declaration would otherwise capture.
    :param allow_sha1:
        Accept SHA1-based signature and digest algorithms. See `SHA1 deprecation`_.
    """

    signature_annotators: List
    """
    A list of callables that will be called at signature creation time to annotate the content to be signed before
    signing. You can use this to register a custom signature decorator as follows:

    .. code-block:: python

        def my_annotator(sig_root, signing_settings):
            ...
            sig_root.append(my_custom_node)

        signer = XMLSigner()
        signer.signature_annotators.append(my_annotator)
        signed = signer.sign(data, ...)
    """

    def __init__(
        self,
        method: Union[SignatureConstructionMethod, str] = SignatureConstructionMethod.enveloped,
        signature_algorithm: Union[SignatureMethod, str] = SignatureMethod.RSA_SHA256,
        digest_algorithm: Union[DigestAlgorithm, str] = DigestAlgorithm.SHA256,
        c14n_algorithm: Union[CanonicalizationMethod, str] = CanonicalizationMethod.CANONICAL_XML_1_0,
        namespace_prefix: Optional[str] = None,
        allow_sha1: bool = False,
    ):
        if method is None:
            raise InvalidInput(f"Unknown signature construction method {method}")
        self.construction_method = SignatureConstructionMethod.from_name(method)
        self.sign_alg = SignatureMethod.from_name(signature_algorithm)
        self.digest_alg = DigestAlgorithm.from_name(digest_algorithm)
        if not allow_sha1:
            self.check_deprecated_methods()
        self.c14n_alg = CanonicalizationMethod.from_name(c14n_algorithm)
        if namespace_prefix and (not ncname_regexp.match(namespace_prefix) or namespace_prefix.lower() == "xmlns"):
            raise InvalidInput(f"Invalid namespace prefix: {namespace_prefix}")
        self.namespaces: Dict[Optional[str], str] = {namespace_prefix or None: namespaces.ds}
        self._parser = None
        self.signature_annotators = [self._add_key_info]

    def check_deprecated_methods(self):
        if "SHA1" in self.sign_alg.name or "SHA1" in self.digest_alg.name:
            msg = "SHA1-based algorithms are not supported in the default configuration because they are not secure"
            raise UnsupportedAlgorithmError(msg)

    def sign(
        self,
        data,
        *,
        key: Optional[Union[str, bytes, rsa.RSAPrivateKey, dsa.DSAPrivateKey, ec.EllipticCurvePrivateKey]] = None,
        passphrase: Optional[bytes] = None,
        cert: Optional[Union[str, bytes, x509.Certificate, List[x509.Certificate]]] = None,
        selector: Optional[str] = None,
        selector_namespaces: Optional[Dict[str, str]] = None,
        inclusive_ns_prefixes: Optional[List[str]] = None,
    ) -> _Element:
        """
        Sign the data and return the root element of the resulting XML tree.

        :param data: Data to sign
        :type data: String, or XML ElementTree Element API compatible object
        :param key:
            Key to be used for signing. When signing with a certificate or RSA/DSA/ECDSA key, this can be a string/bytes
            containing a PEM-formatted key, or a cryptography private key object. When signing with a HMAC, this should
            be a string or bytes containing the shared secret.
        :param passphrase: Passphrase to use to decrypt a PEM-formatted key, if any.
        :param cert:
            X.509 certificate to embed in the signature's KeyInfo. This can be a string containing one or more
            PEM-formatted certificates, or one or a list of :class:`cryptography.x509.Certificate` objects with the
            signing certificate first. When no certificate is given, the public key is embedded as a KeyValue.
        :param selector:
            XPath expression selecting the elements to sign, evaluated against the root of **data**. The expression is
            recorded in the signature as an XPath Filter 2.0 transform.
        :param selector_namespaces: Prefix to namespace URI mapping used to evaluate **selector**.
        :param inclusive_ns_prefixes:
            Provide a list of XML namespace prefixes whose declarations should be preserved when canonicalizing with an
            exclusive method (**InclusiveNamespaces PrefixList**).

        :returns:
            A :class:`lxml.etree._Element` object: the signed document for enveloped signatures, and the Signature
            element for enveloping and detached signatures.
        """
        if isinstance(cert, (str, bytes)):
            cert_chain: Optional[List[x509.Certificate]] = self._load_certificates(cert)
        elif isinstance(cert, x509.Certificate):
            cert_chain = [cert]
        else:
            cert_chain = cert

        signing_settings = SigningSettings(
            key=None,
            cert_chain=cert_chain,
            selector=selector,
            selector_namespaces=dict(selector_namespaces or {}),
        )

        if key is None:
            raise InvalidInput('Parameter "key" is required')
        elif self.sign_alg.family == "HMAC":
            signing_settings.hmac_key = key
        elif isinstance(key, (str, bytes)):
            try:
                signing_settings.key = load_pem_private_key(ensure_bytes(key), password=passphrase)
            except (ValueError, TypeError) as e:
                raise KeyFormatError(f"Unable to load private key: {e}") from e
        else:
            signing_settings.key = key
        family = self.sign_alg.family
        if family != "HMAC" and not isinstance(signing_settings.key, private_key_types[family]):
            raise KeyAlgorithmMismatchError(
                f"{self.sign_alg.name} requires a {self.sign_alg.family} private key, "
                f"got {type(signing_settings.key).__name__}"
            )

        sig_root, doc_root, c14n_inputs, reference_uri = self._unpack(data, signing_settings)

        signed_info_node, signature_value_node = self._build_sig(
            sig_root,
            reference_uri=reference_uri,
            c14n_inputs=c14n_inputs,
            inclusive_ns_prefixes=inclusive_ns_prefixes,
            signing_settings=signing_settings,
        )

        for signature_annotator in self.signature_annotators:
            signature_annotator(sig_root, signing_settings=signing_settings)

        signed_info_c14n = self._c14n(
            signed_info_node, algorithm=self.c14n_alg, inclusive_ns_prefixes=inclusive_ns_prefixes
        )
        signing_key = signing_settings.hmac_key if self.sign_alg.family == "HMAC" else signing_settings.key
        signature = DigestSigner().sign(signed_info_c14n, signing_key, self.sign_alg)
        signature_value_node.text = b64encode(signature).decode()

        if self.construction_method == SignatureConstructionMethod.enveloping:
            for c14n_input in c14n_inputs:
                doc_root.append(c14n_input)

        return doc_root if self.construction_method == SignatureConstructionMethod.enveloped else sig_root

    def _load_certificates(self, pem_data) -> List[x509.Certificate]:
        try:
            return x509.load_pem_x509_certificates(ensure_bytes(pem_data))
        except ValueError as e:
            raise KeyFormatError(f"Unable to load certificate: {e}") from e

    def _add_key_info(self, sig_root, signing_settings: SigningSettings):
        if self.sign_alg.family == "HMAC":
            return
        key_info = SubElement(sig_root, ds_tag("KeyInfo"))
        if signing_settings.cert_chain:
            x509_data = SubElement(key_info, ds_tag("X509Data"))
            for cert in signing_settings.cert_chain:
                x509_certificate = SubElement(x509_data, ds_tag("X509Certificate"))
                x509_certificate.text = b64encode(cert.public_bytes(Encoding.DER)).decode()
        else:
            self._serialize_key_value(signing_settings.key, key_info)

    def _get_c14n_inputs(self, doc_root, signing_settings: SigningSettings):
        if signing_settings.selector is None:
            return [self.get_root(doc_root)]
        selected = self._select(doc_root, signing_settings.selector, signing_settings.selector_namespaces)
        return [self.get_root(node) for node in selected]

    def _unpack(self, data, signing_settings: SigningSettings):
        if self.construction_method == SignatureConstructionMethod.enveloped:
            if isinstance(data, (str, bytes)):
                raise InvalidInput("When using enveloped signature, **data** must be an XML element")
            doc_root = self.get_root(data)
            c14n_inputs = self._get_c14n_inputs(doc_root, signing_settings)
            sig_root = Element(ds_tag("Signature"), nsmap=self.namespaces)
            doc_root.append(sig_root)
            reference_uri = ""
        elif self.construction_method == SignatureConstructionMethod.detached:
            doc_root = self.get_root(data)
            c14n_inputs = self._get_c14n_inputs(doc_root, signing_settings)
            sig_root = Element(ds_tag("Signature"), nsmap=self.namespaces)
            payload_id = doc_root.get("Id", doc_root.get("ID"))
            reference_uri = "#{}".format(payload_id) if payload_id is not None else ""
        elif self.construction_method == SignatureConstructionMethod.enveloping:
            nsmap = dict(self.namespaces)
            if isinstance(data, (str, bytes)) and signing_settings.selector is None:
                content = None
            else:
                content = self._get_c14n_inputs(self.get_root(data), signing_settings)
                if None in nsmap and any(
                    QName(el).namespace is None for node in content for el in node.iter() if isinstance(el.tag, str)
                ):
                    logger.debug("Enveloping content has unqualified elements, using the ds prefix")
                    nsmap = dict(ds=namespaces.ds)
            sig_root = Element(ds_tag("Signature"), nsmap=nsmap)
            doc_root = sig_root
            obj = Element(ds_tag("Object"), nsmap=nsmap, Id="object")
            if content is None:
                obj.text = data if isinstance(data, str) else data.decode()
            else:
                for node in content:
                    obj.append(node)
            c14n_inputs = [obj]
            reference_uri = "#object"
        return sig_root, doc_root, c14n_inputs, reference_uri

    def _build_transforms_for_reference(self, *, transforms_node: _Element, inclusive_ns_prefixes, signing_settings):
        if self.construction_method == SignatureConstructionMethod.enveloped:
            SubElement(transforms_node, ds_tag("Transform"), Algorithm=SignatureConstructionMethod.enveloped.value)
        if signing_settings.selector is not None and self.construction_method != SignatureConstructionMethod.enveloping:
            filter_xform = SubElement(transforms_node, ds_tag("Transform"), Algorithm=namespaces.dsig_xpath)
            xpath_nsmap = dict(signing_settings.selector_namespaces)
            xpath_nsmap["dsig-xpath"] = namespaces.dsig_xpath
            xpath = SubElement(filter_xform, dsig_xpath_tag("XPath"), Filter="intersect", nsmap=xpath_nsmap)
            xpath.text = signing_settings.selector
        c14n_xform = SubElement(transforms_node, ds_tag("Transform"), Algorithm=self.c14n_alg.value)
        if inclusive_ns_prefixes and self.c14n_alg.exclusive:
            SubElement(c14n_xform, ec_tag("InclusiveNamespaces"), PrefixList=" ".join(inclusive_ns_prefixes))

    def _build_sig(self, sig_root, reference_uri, c14n_inputs, inclusive_ns_prefixes, signing_settings):
        signed_info = SubElement(sig_root, ds_tag("SignedInfo"), nsmap={sig_root.prefix: namespaces.ds})
        sig_c14n_method = SubElement(signed_info, ds_tag("CanonicalizationMethod"), Algorithm=self.c14n_alg.value)
        if inclusive_ns_prefixes and self.c14n_alg.exclusive:
            SubElement(sig_c14n_method, ec_tag("InclusiveNamespaces"), PrefixList=" ".join(inclusive_ns_prefixes))

        SubElement(signed_info, ds_tag("SignatureMethod"), Algorithm=self.sign_alg.value)
        reference_node = SubElement(signed_info, ds_tag("Reference"), URI=reference_uri)
        transforms = SubElement(reference_node, ds_tag("Transforms"))
        self._build_transforms_for_reference(
            transforms_node=transforms, inclusive_ns_prefixes=inclusive_ns_prefixes, signing_settings=signing_settings
        )
        SubElement(reference_node, ds_tag("DigestMethod"), Algorithm=self.digest_alg.value)
        digest_value = SubElement(reference_node, ds_tag("DigestValue"))
        payload_c14n = self._c14n(c14n_inputs, algorithm=self.c14n_alg, inclusive_ns_prefixes=inclusive_ns_prefixes)
        digest = self._get_digest(payload_c14n, algorithm=self.digest_alg)
        digest_value.text = b64encode(digest).decode()
        signature_value = SubElement(sig_root, ds_tag("SignatureValue"))
        return signed_info, signature_value

    def _serialize_key_value(self, key, key_info_node):
        """
        Add the public components of the key to the signature (see https://www.w3.org/TR/xmldsig-core2/#sec-KeyValue).
        """
        key_value = SubElement(key_info_node, ds_tag("KeyValue"))
        if self.sign_alg.family in ("RSA", "RSA_PSS"):
            rsa_key_value = SubElement(key_value, ds_tag("RSAKeyValue"))
            modulus = SubElement(rsa_key_value, ds_tag("Modulus"))
            modulus.text = b64encode(long_to_bytes(key.public_key().public_numbers().n)).decode()
            exponent = SubElement(rsa_key_value, ds_tag("Exponent"))
            exponent.text = b64encode(long_to_bytes(key.public_key().public_numbers().e)).decode()
        elif self.sign_alg.family == "DSA":
            dsa_key_value = SubElement(key_value, ds_tag("DSAKeyValue"))
            for field in "p", "q", "g", "y":
                e = SubElement(dsa_key_value, ds_tag(field.upper()))

                if field == "y":
                    key_params = key.public_key().public_numbers()
                else:
                    key_params = key.parameters().parameter_numbers()

                e.text = b64encode(long_to_bytes(getattr(key_params, field))).decode()
        elif self.sign_alg.family == "ECDSA":
            ec_key_value = SubElement(key_value, dsig11_tag("ECKeyValue"), nsmap=dict(dsig11=namespaces.dsig11))
            named_curve = SubElement(  # noqa:F841
                ec_key_value, dsig11_tag("NamedCurve"), URI=self.known_ecdsa_curve_oids[key.curve.name]
            )
            public_key = SubElement(ec_key_value, dsig11_tag("PublicKey"))
            x = key.public_key().public_numbers().x
            y = key.public_key().public_numbers().y
            int_len = bits_to_bytes_unit(key.curve.key_size)
            point = long_to_bytes(4) + long_to_bytes(x, blocksize=int_len) + long_to_bytes(y, blocksize=int_len)
            public_key.text = b64encode(point).decode()
