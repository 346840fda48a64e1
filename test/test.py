#!/usr/bin/env python

import datetime
import itertools
import os
import shutil
import sys
import tempfile
import unittest
from base64 import b64decode, b64encode
from concurrent.futures import ThreadPoolExecutor
from xml.etree import ElementTree as stdlibElementTree

import jks
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import (
    BestAvailableEncryption,
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    pkcs12,
)
from cryptography.x509.oid import NameOID
from lxml import etree

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
from xmlcrypto import (  # noqa:E402
    CanonicalizationMethod,
    Canonicalizer,
    CertificateDescriptor,
    CipherEngine,
    ConfigurationError,
    DecryptionError,
    DigestAlgorithm,
    ExtractedSignature,
    InvalidInput,
    KeyAlgorithmMismatchError,
    KeyFormatError,
    KeyMaterialResolver,
    KeyResolutionError,
    MalformedSignatureError,
    SelectorNoMatchError,
    SignatureConfiguration,
    SignatureEngine,
    SignatureMethod,
    SignatureParameters,
    UnsupportedAlgorithmError,
    XMLCryptoException,
    XMLSigner,
    XMLVerifier,
    compute_hash,
    compute_hmac,
    methods,
    namespaces,
)

example_xml = (
    b'<root xmlns:x="urn:example:x"><x:item Id="i1">Austria</x:item><plain attr="1">text</plain>'
    b"<list><n>1</n><n>2</n></list></root>"
)


def make_certificate(key, common_name):
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=365))
        .sign(key, hashes.SHA256())
    )


def find(element, query):
    return element.find(query, namespaces=namespaces)


class LoadExampleKeys:
    @classmethod
    def setUpClass(cls):
        cls.tempdir = tempfile.mkdtemp()
        cls.key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        cls.cert = make_certificate(cls.key, "xmlcrypto test")
        cls.other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        cls.other_cert = make_certificate(cls.other_key, "someone else")

        cls.keystore_path = os.path.join(cls.tempdir, "keystore.p12")
        with open(cls.keystore_path, "wb") as fh:
            fh.write(
                pkcs12.serialize_key_and_certificates(
                    name=b"xmlcrypto",
                    key=cls.key,
                    cert=cls.cert,
                    cas=None,
                    encryption_algorithm=BestAvailableEncryption(b"password"),
                )
            )
        cls.truststore_path = os.path.join(cls.tempdir, "truststore.p12")
        with open(cls.truststore_path, "wb") as fh:
            fh.write(
                pkcs12.serialize_key_and_certificates(
                    name=None,
                    key=None,
                    cert=None,
                    cas=[pkcs12.PKCS12Certificate(cls.other_cert, b"trusted")],
                    encryption_algorithm=BestAvailableEncryption(b"password"),
                )
            )
        cls.jks_path = os.path.join(cls.tempdir, "keystore.jks")
        key_entry = jks.PrivateKeyEntry.new(
            "xmlcrypto",
            [cls.cert.public_bytes(Encoding.DER)],
            cls.key.private_bytes(Encoding.DER, PrivateFormat.PKCS8, NoEncryption()),
        )
        key_entry.encrypt("keypass")
        trusted_entry = jks.TrustedCertEntry.new("trusted", cls.other_cert.public_bytes(Encoding.DER))
        jks.KeyStore.new("jks", [key_entry, trusted_entry]).save(cls.jks_path, "storepass")

        cls.descriptor = CertificateDescriptor(
            keystore_type="PKCS12",
            keystore_password="password",
            key_alias="xmlcrypto",
            keystore_location=cls.keystore_path,
        )

    @classmethod
    def tearDownClass(cls):
        shutil.rmtree(cls.tempdir)


class TestSignatureEngine(LoadExampleKeys, unittest.TestCase):
    def test_default_signature(self):
        engine = SignatureEngine()
        signed = engine.generate_signature(etree.fromstring("<a/>"), certificate=self.descriptor)
        self.assertEqual(signed.tag, "a")
        signature = signed[0]
        self.assertEqual(signature.tag, "{http://www.w3.org/2000/09/xmldsig#}Signature")
        self.assertIsNone(signature.prefix)
        self.assertEqual(
            find(signature, "ds:SignedInfo/ds:CanonicalizationMethod").get("Algorithm"),
            CanonicalizationMethod.CANONICAL_XML_1_0.value,
        )
        self.assertEqual(
            find(signature, "ds:SignedInfo/ds:SignatureMethod").get("Algorithm"), SignatureMethod.RSA_SHA256.value
        )
        self.assertEqual(
            find(signature, "ds:SignedInfo/ds:Reference/ds:DigestMethod").get("Algorithm"),
            DigestAlgorithm.SHA256.value,
        )
        self.assertTrue(engine.validate_signature(signed))
        self.assertTrue(engine.validate_signature(etree.tostring(signed)))

    def test_selector_signature(self):
        engine = SignatureEngine()
        doc = etree.fromstring("<a><n/><n/></a>")
        signed = engine.generate_signature(doc, SignatureParameters(selector="/a/n"), certificate=self.descriptor)
        self.assertTrue(engine.validate_signature(signed))
        xpath = find(signed, ".//dsig_xpath:XPath")
        self.assertEqual(xpath.text, "/a/n")
        self.assertEqual(xpath.get("Filter"), "intersect")

    def test_fully_specified_signature(self):
        engine = SignatureEngine(legacy_sha1=True)
        params = SignatureParameters("exclusive", "SHA512", "RSA_SHA1", "myPrefix", "enveloped", "/a/n")
        signed = engine.generate_signature(etree.fromstring("<a><n/></a>"), params, certificate=self.descriptor)
        signature = signed[-1]
        self.assertEqual(signature.prefix, "myPrefix")
        self.assertIn(b"<myPrefix:Signature", etree.tostring(signed))
        self.assertTrue(engine.validate_signature(signed))

        extracted = XMLVerifier(config=engine.verifier_config).extract(signed)
        self.assertIsInstance(extracted, ExtractedSignature)
        self.assertEqual(extracted.parameters.c14n_algorithm, CanonicalizationMethod.EXCLUSIVE_XML_CANONICALIZATION_1_0)
        self.assertEqual(extracted.parameters.digest_algorithm, DigestAlgorithm.SHA512)
        self.assertEqual(extracted.parameters.signature_algorithm, SignatureMethod.RSA_SHA1)
        self.assertEqual(extracted.parameters.namespace_prefix, "myPrefix")
        self.assertEqual(extracted.parameters.placement, methods.enveloped)
        self.assertEqual(extracted.parameters.selector, "/a/n")
        self.assertEqual(extracted.certificate_ref, [self.cert])
        self.assertEqual(len(extracted.digest_value), 64)

    def test_sha1_policy(self):
        doc = etree.fromstring("<a/>")
        with self.assertRaisesRegex(UnsupportedAlgorithmError, "SHA1-based algorithms are not supported"):
            SignatureEngine().generate_signature(
                doc, SignatureParameters(signature_algorithm="RSA_SHA1"), certificate=self.descriptor
            )
        with self.assertRaisesRegex(UnsupportedAlgorithmError, "SHA1-based algorithms are not supported"):
            SignatureEngine().generate_signature(
                doc, SignatureParameters(digest_algorithm="SHA1"), certificate=self.descriptor
            )
        signed = SignatureEngine(legacy_sha1=True).generate_signature(
            doc, SignatureParameters(signature_algorithm="RSA_SHA1"), certificate=self.descriptor
        )
        with self.assertRaisesRegex(UnsupportedAlgorithmError, "Signature method RSA_SHA1 forbidden by configuration"):
            SignatureEngine().validate_signature(signed)
        self.assertTrue(SignatureEngine(legacy_sha1=True).validate_signature(signed))

    def test_parameters(self):
        params = SignatureParameters("", "", "", "", "", "")
        self.assertEqual(params, SignatureParameters())
        self.assertEqual(params.c14n_algorithm, CanonicalizationMethod.CANONICAL_XML_1_0)
        self.assertEqual(params.digest_algorithm, DigestAlgorithm.SHA256)
        self.assertEqual(params.signature_algorithm, SignatureMethod.RSA_SHA256)
        self.assertIsNone(params.namespace_prefix)
        self.assertEqual(params.placement, methods.enveloped)
        self.assertIsNone(params.selector)
        self.assertEqual(SignatureParameters(placement="Enveloping").placement, methods.enveloping)
        self.assertEqual(SignatureParameters(digest_algorithm="sha-384").digest_algorithm, DigestAlgorithm.SHA384)
        self.assertEqual(
            SignatureParameters(signature_algorithm="rsa-sha512").signature_algorithm, SignatureMethod.RSA_SHA512
        )
        with self.assertRaises(UnsupportedAlgorithmError):
            SignatureParameters(digest_algorithm="MD5")
        with self.assertRaises(UnsupportedAlgorithmError):
            SignatureParameters(placement="inside-out")
        with self.assertRaises(InvalidInput):
            SignatureParameters(selector="//x:b", selector_namespaces={"": "urn:x"})
        with self.assertRaisesRegex(InvalidInput, "Invalid namespace prefix"):
            SignatureEngine().generate_signature("<a/>", SignatureParameters(namespace_prefix="1bad"))

    def test_signature_grid(self):
        sig_algs = [sm for sm in SignatureMethod if "SHA1" not in sm.name]
        c14n_algs = itertools.cycle(CanonicalizationMethod)
        engine = SignatureEngine()
        hmac_key = b"secret"

        def test_case(case):
            sig_alg, method, c14n_alg = case
            params = SignatureParameters(c14n_alg, "SHA384", sig_alg, placement=method)
            key = hmac_key if sig_alg.family == "HMAC" else None
            signed = engine.generate_signature(example_xml, params, hmac_key=key)
            signed_data = etree.tostring(signed)
            detached_content = example_xml if method == methods.detached else None
            validate = dict(hmac_key=key, detached_content=detached_content)
            self.assertTrue(engine.validate_signature(signed_data, **validate), case)

            if method == methods.detached:
                self.assertFalse(
                    engine.validate_signature(
                        signed_data, hmac_key=key, detached_content=example_xml.replace(b"Austria", b"Mongolia")
                    ),
                    case,
                )
            else:
                self.assertFalse(
                    engine.validate_signature(signed_data.replace(b"Austria", b"Mongolia"), **validate), case
                )

            tampered = etree.fromstring(signed_data)
            signature_value = tampered.find(".//ds:SignatureValue", namespaces=namespaces)
            raw = b64decode(signature_value.text)
            signature_value.text = b64encode(raw[:-1] + bytes([raw[-1] ^ 1])).decode()
            self.assertFalse(engine.validate_signature(tampered, **validate), case)

            tampered = etree.fromstring(signed_data)
            digest_value = tampered.find(".//ds:DigestValue", namespaces=namespaces)
            digest_value.text = b64encode(b"\x00" * len(b64decode(digest_value.text))).decode()
            self.assertFalse(engine.validate_signature(tampered, **validate), case)

            if sig_alg.family == "HMAC":
                self.assertFalse(
                    engine.validate_signature(signed_data, hmac_key=b"SECRET", detached_content=detached_content)
                )
            return case

        cases = [(sig_alg, method, next(c14n_algs)) for sig_alg, method in itertools.product(sig_algs, methods)]
        with ThreadPoolExecutor() as executor:
            for _ in executor.map(test_case, cases):
                pass

    def test_concurrent_keystore_signing(self):
        engine = SignatureEngine()

        def sign_and_validate(i):
            doc = etree.fromstring(f"<doc><value>{i}</value></doc>")
            signed = engine.generate_signature(doc, certificate=self.descriptor)
            return engine.validate_signature(etree.tostring(signed))

        with ThreadPoolExecutor(max_workers=8) as executor:
            self.assertTrue(all(executor.map(sign_and_validate, range(32))))

    def test_tamper_detection(self):
        engine = SignatureEngine()
        signed = engine.generate_signature(etree.fromstring(example_xml), certificate=self.descriptor)
        self.assertTrue(engine.validate_signature(signed))

        signed.find("plain").set("attr", "2")
        self.assertFalse(engine.validate_signature(signed))

        signed = engine.generate_signature(etree.fromstring(example_xml), certificate=self.descriptor)
        etree.SubElement(signed, "extra")
        self.assertFalse(engine.validate_signature(signed))

        signed = engine.generate_signature(etree.fromstring(example_xml), certificate=self.descriptor)
        reference = find(signed, ".//ds:SignedInfo/ds:Reference")
        find(reference, "ds:DigestMethod").set("Algorithm", DigestAlgorithm.SHA512.value)
        self.assertFalse(engine.validate_signature(signed))

        signed = etree.tostring(engine.generate_signature("<p><b>x</b><i>y</i></p>", certificate=self.descriptor))
        self.assertTrue(engine.validate_signature(signed))
        self.assertIn(b"</b><i>", signed)
        self.assertFalse(engine.validate_signature(signed.replace(b"</b><i>", b"</b> <i>")))

    def test_selector_semantics(self):
        engine = SignatureEngine()
        doc = etree.fromstring("<a><n>1</n><n>2</n><m>3</m></a>")
        whole = engine.generate_signature(doc, certificate=self.descriptor)
        selected = engine.generate_signature(doc, SignatureParameters(selector="/a/n"), certificate=self.descriptor)
        self.assertNotEqual(find(whole, ".//ds:DigestValue").text, find(selected, ".//ds:DigestValue").text)

        selected.find("m").text = "changed"
        self.assertTrue(engine.validate_signature(selected))
        selected.find("n").text = "changed"
        self.assertFalse(engine.validate_signature(selected))

        selected = engine.generate_signature(doc, SignatureParameters(selector="/a/n"), certificate=self.descriptor)
        for n in selected.findall("n"):
            selected.remove(n)
        self.assertFalse(engine.validate_signature(selected))

        with self.assertRaisesRegex(SelectorNoMatchError, "did not match any element"):
            engine.generate_signature(doc, SignatureParameters(selector="/a/zzz"), certificate=self.descriptor)
        with self.assertRaisesRegex(InvalidInput, "must select elements"):
            engine.generate_signature(doc, SignatureParameters(selector="count(/a/n)"), certificate=self.descriptor)
        with self.assertRaisesRegex(InvalidInput, "Invalid selector"):
            engine.generate_signature(doc, SignatureParameters(selector="/a/["), certificate=self.descriptor)

    def test_namespaced_selector(self):
        engine = SignatureEngine()
        params = SignatureParameters(
            c14n_algorithm="exclusive", selector="//x:item", selector_namespaces={"x": "urn:example:x"}
        )
        signed = engine.generate_signature(example_xml, params, certificate=self.descriptor)
        self.assertEqual(find(signed, ".//dsig_xpath:XPath").nsmap["x"], "urn:example:x")
        self.assertTrue(engine.validate_signature(etree.tostring(signed)))
        self.assertFalse(engine.validate_signature(etree.tostring(signed).replace(b"Austria", b"Mongolia")))

    def test_placements(self):
        engine = SignatureEngine()
        doc = etree.fromstring('<a Id="payload"><b>text</b></a>')

        enveloping = engine.generate_signature(
            doc, SignatureParameters(placement="enveloping"), certificate=self.descriptor
        )
        self.assertEqual(enveloping.tag, "{http://www.w3.org/2000/09/xmldsig#}Signature")
        self.assertEqual(find(enveloping, "ds:SignedInfo/ds:Reference").get("URI"), "#object")
        self.assertEqual(find(enveloping, "ds:Object").get("Id"), "object")
        self.assertEqual(find(enveloping, "ds:Object/a/b").text, "text")
        self.assertTrue(engine.validate_signature(enveloping))
        extracted = XMLVerifier().extract(enveloping)
        self.assertEqual(extracted.parameters.placement, methods.enveloping)

        detached = engine.generate_signature(
            doc, SignatureParameters(placement="detached"), certificate=self.descriptor
        )
        self.assertEqual(detached.tag, "{http://www.w3.org/2000/09/xmldsig#}Signature")
        self.assertEqual(find(detached, "ds:SignedInfo/ds:Reference").get("URI"), "#payload")
        self.assertIsNone(doc.find("{http://www.w3.org/2000/09/xmldsig#}Signature"))
        self.assertTrue(engine.validate_signature(detached, detached_content=doc))
        self.assertFalse(
            engine.validate_signature(detached, detached_content='<a Id="payload"><b>other</b></a>')
        )
        extracted = XMLVerifier().extract(detached, detached_content=doc)
        self.assertEqual(extracted.parameters.placement, methods.detached)

        detached = engine.generate_signature(
            "<a><b>text</b></a>", SignatureParameters(placement="detached"), certificate=self.descriptor
        )
        self.assertEqual(find(detached, "ds:SignedInfo/ds:Reference").get("URI"), "")
        with self.assertRaisesRegex(MalformedSignatureError, "must be supplied"):
            engine.validate_signature(detached)

    def test_enveloping_text(self):
        signed = XMLSigner(method=methods.enveloping).sign("x y \n z t\n я\n", key=self.key, cert=self.cert)
        self.assertEqual(find(signed, "ds:Object").text, "x y \n z t\n я\n")
        self.assertTrue(XMLVerifier().verify(etree.tostring(signed)))

    def test_reused_enveloping_signer(self):
        signer = XMLSigner(method=methods.enveloping)
        unqualified = signer.sign(etree.fromstring("<a>1</a>"), key=self.key, cert=self.cert)
        self.assertEqual(unqualified.prefix, "ds")
        self.assertEqual(find(unqualified, "ds:SignedInfo").prefix, "ds")
        qualified = signer.sign(etree.fromstring('<x:a xmlns:x="urn:x">1</x:a>'), key=self.key, cert=self.cert)
        self.assertIsNone(qualified.prefix)
        self.assertIsNone(find(qualified, "ds:SignedInfo").prefix)
        for signed in unqualified, qualified:
            self.assertTrue(XMLVerifier().verify(etree.tostring(signed)))

    def test_elementtree_compat(self):
        engine = SignatureEngine()
        data = stdlibElementTree.fromstring(example_xml)
        signed = engine.generate_signature(data, certificate=self.descriptor)
        self.assertTrue(engine.validate_signature(signed))
        self.assertTrue(engine.validate_signature(etree.tostring(signed)))

    def test_pretty_printed_document(self):
        engine = SignatureEngine()
        signed = engine.generate_signature(example_xml, certificate=self.descriptor)
        pretty = etree.tostring(signed, pretty_print=True)
        self.assertNotEqual(pretty, etree.tostring(signed))
        self.assertTrue(engine.validate_signature(pretty))

    def test_ephemeral_keys(self):
        engine = SignatureEngine()
        for sig_alg in "RSA_SHA256", "ECDSA_SHA256", "SHA256_RSA_MGF1":
            signed = engine.generate_signature("<a>b</a>", SignatureParameters(signature_algorithm=sig_alg))
            self.assertIsNotNone(find(signed, ".//ds:KeyInfo/ds:KeyValue"))
            self.assertIsNone(find(signed, ".//ds:KeyInfo/ds:X509Data"))
            self.assertTrue(engine.validate_signature(signed))
            with self.assertRaisesRegex(InvalidInput, "Expected a X.509 certificate based signature"):
                XMLVerifier(config=SignatureConfiguration(require_x509=True)).verify(signed)

    def test_hmac(self):
        engine = SignatureEngine()
        params = SignatureParameters(signature_algorithm="HMAC_SHA256")
        with self.assertRaisesRegex(ConfigurationError, "require the hmac_key argument"):
            engine.generate_signature("<a/>", params)
        signed = engine.generate_signature("<a/>", params, hmac_key="secret")
        self.assertIsNone(find(signed, ".//ds:KeyInfo"))
        self.assertTrue(engine.validate_signature(signed, hmac_key=b"secret"))
        self.assertFalse(engine.validate_signature(signed, hmac_key=b"other"))
        with self.assertRaisesRegex(ConfigurationError, "require the hmac_key argument"):
            engine.validate_signature(signed)

    def test_x509_cert_pinning(self):
        engine = SignatureEngine()
        signed = engine.generate_signature("<a/>", certificate=self.descriptor)
        pem = self.cert.public_bytes(Encoding.PEM).decode()
        self.assertTrue(engine.validate_signature(signed, x509_cert=pem))
        self.assertTrue(engine.validate_signature(signed, x509_cert=self.cert))
        self.assertFalse(engine.validate_signature(signed, x509_cert=self.other_cert))
        with self.assertRaises(KeyFormatError):
            engine.validate_signature(signed, x509_cert="not a certificate")

    def test_key_algorithm_mismatch(self):
        with self.assertRaisesRegex(KeyAlgorithmMismatchError, "requires a ECDSA private key"):
            SignatureEngine().generate_signature(
                "<a/>", SignatureParameters(signature_algorithm="ECDSA_SHA256"), certificate=self.descriptor
            )
        with self.assertRaises(KeyFormatError):
            XMLSigner().sign(etree.fromstring("<a/>"), key="not a key")

    def test_malformed_signatures(self):
        engine = SignatureEngine()
        with self.assertRaisesRegex(MalformedSignatureError, "Expected to find XML element Signature"):
            engine.validate_signature("<a/>")
        with self.assertRaisesRegex(MalformedSignatureError, "Unable to parse"):
            engine.validate_signature("not xml at all")
        with self.assertRaises(InvalidInput):
            engine.generate_signature("<a>", certificate=self.descriptor)

        signed = engine.generate_signature("<a/>", certificate=self.descriptor)
        signature = find(signed, "ds:Signature")
        signature.remove(find(signature, "ds:SignedInfo"))
        with self.assertRaisesRegex(MalformedSignatureError, "Expected to find XML element SignedInfo"):
            engine.validate_signature(signed)

        signed = engine.generate_signature("<a/>", certificate=self.descriptor)
        find(signed, ".//ds:DigestValue").text = "!!!"
        with self.assertRaisesRegex(MalformedSignatureError, "not valid base64"):
            engine.validate_signature(signed)

        signed = engine.generate_signature("<a/>", certificate=self.descriptor)
        find(signed, ".//ds:SignatureValue").text = ""
        with self.assertRaisesRegex(MalformedSignatureError, "SignatureValue is empty"):
            engine.validate_signature(signed)

        signed = engine.generate_signature("<a/>", certificate=self.descriptor)
        find(signed, ".//ds:SignatureMethod").set("Algorithm", "urn:unknown")
        with self.assertRaisesRegex(UnsupportedAlgorithmError, "Unrecognized SignatureMethod"):
            engine.validate_signature(signed)

        signed = engine.generate_signature("<a/>", certificate=self.descriptor)
        reference = find(signed, ".//ds:Reference")
        reference.getparent().append(etree.fromstring(etree.tostring(reference)))
        with self.assertRaisesRegex(MalformedSignatureError, "Expected exactly one Reference"):
            engine.validate_signature(signed)

        with self.assertRaises(InvalidInput):
            engine.validate_signature('<!DOCTYPE a [<!ENTITY e "boom">]><a>&e;</a>')

    def test_verify_config(self):
        signed = SignatureEngine().generate_signature("<a/>", certificate=self.descriptor)
        verifier = XMLVerifier(config=SignatureConfiguration(location="./foo/bar/"))
        with self.assertRaisesRegex(InvalidInput, "Expected to find XML element Signature in a"):
            verifier.verify(signed)
        verifier = XMLVerifier(config=SignatureConfiguration(signature_methods=frozenset()))
        with self.assertRaisesRegex(InvalidInput, "Signature method RSA_SHA256 forbidden by configuration"):
            verifier.verify(signed)
        verifier = XMLVerifier(config=SignatureConfiguration(digest_algorithms=frozenset([DigestAlgorithm.SHA3_512])))
        with self.assertRaisesRegex(InvalidInput, "Digest algorithm SHA256 forbidden by configuration"):
            verifier.verify(signed)


class TestKeyMaterialResolver(LoadExampleKeys, unittest.TestCase):
    def test_resolve(self):
        material = KeyMaterialResolver().resolve(self.descriptor)
        self.assertEqual(material.certificate, self.cert)
        self.assertEqual(material.public_key.public_numbers(), self.key.public_key().public_numbers())
        self.assertEqual(material.private_key.private_numbers(), self.key.private_numbers())
        self.assertEqual(material.cert_chain, [self.cert])

        descriptor = CertificateDescriptor(
            keystore_password="password", key_alias="XMLCrypto", keystore_location=self.keystore_path
        )
        self.assertEqual(KeyMaterialResolver().resolve(descriptor).certificate, self.cert)

    def test_resolution_failures(self):
        def resolve(**kwargs):
            values = dict(keystore_password="password", key_alias="xmlcrypto", keystore_location=self.keystore_path)
            values.update(kwargs)
            return KeyMaterialResolver().resolve(CertificateDescriptor(**values))

        with self.assertRaisesRegex(KeyResolutionError, "Unable to unlock keystore"):
            resolve(keystore_password="wrong")
        with self.assertRaisesRegex(KeyResolutionError, "Unable to open keystore"):
            resolve(keystore_location=os.path.join(self.tempdir, "missing.p12"))
        with self.assertRaisesRegex(KeyResolutionError, "Alias nobody not found"):
            resolve(key_alias="nobody")
        with self.assertRaisesRegex(KeyResolutionError, "not a private key entry"):
            resolve(key_alias="trusted", keystore_location=self.truststore_path)
        with self.assertRaisesRegex(KeyResolutionError, "wrong private key password"):
            resolve(private_key_password="totally-wrong")
        with self.assertRaisesRegex(KeyResolutionError, "Unable to unlock keystore"):
            resolve(keystore_type="JKS")
        with self.assertRaisesRegex(KeyResolutionError, "Unsupported keystore type"):
            resolve(keystore_type="PEM")
        with self.assertRaises(XMLCryptoException):
            SignatureEngine().generate_signature("<a/>", certificate=dict(self.descriptor.__dict__, key_alias="x"))

    def test_java_keystore(self):
        def resolve(**kwargs):
            values = dict(
                keystore_type="JKS",
                keystore_password="storepass",
                key_alias="XMLCrypto",
                private_key_password="keypass",
                keystore_location=self.jks_path,
            )
            values.update(kwargs)
            return KeyMaterialResolver().resolve(CertificateDescriptor(**values))

        material = resolve()
        self.assertEqual(material.certificate, self.cert)
        self.assertEqual(material.private_key.private_numbers(), self.key.private_numbers())
        self.assertEqual(material.public_key.public_numbers(), self.key.public_key().public_numbers())

        with self.assertRaisesRegex(KeyResolutionError, "wrong private key password"):
            resolve(private_key_password="totally-wrong")
        with self.assertRaisesRegex(KeyResolutionError, "wrong private key password"):
            resolve(private_key_password=None)
        with self.assertRaisesRegex(KeyResolutionError, "Unable to unlock keystore"):
            resolve(keystore_password="wrong")
        with self.assertRaisesRegex(KeyResolutionError, "Alias nobody not found"):
            resolve(key_alias="nobody")
        with self.assertRaisesRegex(KeyResolutionError, "not a private key entry"):
            resolve(key_alias="trusted")
        with self.assertRaisesRegex(KeyResolutionError, "Unable to unlock keystore"):
            resolve(keystore_location=self.keystore_path)

        engine = SignatureEngine()
        descriptor = CertificateDescriptor.from_xml(
            f"""
            <digital-certificate>
              <keystore-type>JKS</keystore-type>
              <keystore-password>storepass</keystore-password>
              <key-alias>xmlcrypto</key-alias>
              <private-key-password>keypass</private-key-password>
              <keystore-uri>{self.jks_path}</keystore-uri>
            </digital-certificate>
            """
        )
        signed = engine.generate_signature(example_xml, certificate=descriptor)
        self.assertTrue(engine.validate_signature(signed, x509_cert=self.cert))

    def test_descriptor(self):
        with self.assertRaisesRegex(ConfigurationError, "keystore_password must not be empty"):
            CertificateDescriptor(key_alias="a", keystore_location="/tmp/k.p12")
        with self.assertRaisesRegex(ConfigurationError, "key_alias must not be empty"):
            CertificateDescriptor(keystore_password="p", keystore_location="/tmp/k.p12")
        with self.assertRaisesRegex(ConfigurationError, "keystore_location must not be empty"):
            CertificateDescriptor(keystore_password="p", key_alias="a")

        descriptor = CertificateDescriptor(
            keystore_type="", keystore_password="secret", key_alias="a", keystore_location="file:///tmp/k.p12"
        )
        self.assertEqual(descriptor.keystore_type, "PKCS12")
        self.assertEqual(descriptor.private_key_password, "secret")
        self.assertEqual(descriptor.path, "/tmp/k.p12")
        self.assertNotIn("secret", repr(descriptor))

        descriptor = CertificateDescriptor.from_mapping(
            {"keystore-type": "PKCS12", "keystore-password": "password", "key-alias": "xmlcrypto", "keystore-uri": "x"}
        )
        self.assertEqual(descriptor.keystore_location, "x")
        with self.assertRaisesRegex(ConfigurationError, "Unknown certificate descriptor field: colour"):
            CertificateDescriptor.from_mapping({"colour": "blue"})

        xml = f"""
        <digital-certificate>
          <keystore-type>PKCS12</keystore-type>
          <keystore-password>password</keystore-password>
          <key-alias>xmlcrypto</key-alias>
          <private-key-password>password</private-key-password>
          <keystore-uri>{self.keystore_path}</keystore-uri>
        </digital-certificate>
        """
        self.assertEqual(CertificateDescriptor.from_xml(xml), self.descriptor)
        with self.assertRaisesRegex(ConfigurationError, "Expected a digital-certificate element"):
            CertificateDescriptor.from_xml("<certificate/>")

        engine = SignatureEngine()
        signed = engine.generate_signature("<a/>", certificate=etree.fromstring(xml))
        self.assertTrue(engine.validate_signature(signed))


class TestCanonicalizer(unittest.TestCase):
    def test_determinism(self):
        c14n = Canonicalizer()
        expected = b'<a a="2" b="1"><c></c></a>'
        for variant in '<a b="1" a="2"><c/></a>', "<a  a='2'   b='1'><c></c></a>", '<a a="2" b="1">\n  <c/>\n</a>':
            self.assertEqual(c14n.canonicalize(variant), expected)
        self.assertEqual(c14n.canonicalize(etree.fromstring('<a b="1" a="2"><c/></a>')), expected)

    def test_significant_whitespace(self):
        c14n = Canonicalizer()
        for method in "inclusive", "exclusive":
            spaced = c14n.canonicalize("<p><b>x</b> <i>y</i></p>", method)
            self.assertEqual(spaced, b"<p><b>x</b> <i>y</i></p>")
            self.assertNotEqual(spaced, c14n.canonicalize("<p><b>x</b><i>y</i></p>", method))
        self.assertEqual(c14n.canonicalize("<p>a\n<b>x</b>\n</p>"), b"<p>a\n<b>x</b>\n</p>")
        self.assertEqual(c14n.canonicalize("<a>\n</a>"), b"<a>\n</a>")
        preserved = '<a xml:space="preserve">\n  <c/>\n</a>'
        self.assertEqual(c14n.canonicalize(preserved), preserved.replace("<c/>", "<c></c>").encode())

    def test_methods(self):
        c14n = Canonicalizer()
        doc = '<a xmlns:u="urn:unused"><!-- note --><b/></a>'
        self.assertEqual(c14n.canonicalize(doc), b'<a xmlns:u="urn:unused"><b></b></a>')
        self.assertEqual(c14n.canonicalize(doc, "exclusive"), b"<a><b></b></a>")
        self.assertEqual(c14n.canonicalize(doc, "exclusive-with-comments"), b"<a><!-- note --><b></b></a>")
        self.assertEqual(
            c14n.canonicalize(doc, CanonicalizationMethod.CANONICAL_XML_1_0_WITH_COMMENTS),
            b'<a xmlns:u="urn:unused"><!-- note --><b></b></a>',
        )
        self.assertEqual(
            c14n.canonicalize(doc, "exclusive", inclusive_ns_prefixes=["u"]), b'<a xmlns:u="urn:unused"><b></b></a>'
        )
        with self.assertRaises(UnsupportedAlgorithmError):
            c14n.canonicalize(doc, "c14n-2.0")

    def test_nested_namespaces(self):
        doc = etree.fromstring('<abc xmlns="http://example.com"><foo xmlns="">bar</foo></abc>')
        self.assertEqual(
            Canonicalizer().canonicalize(doc, CanonicalizationMethod.CANONICAL_XML_1_1),
            b'<abc xmlns="http://example.com"><foo xmlns="">bar</foo></abc>',
        )


class TestHashes(unittest.TestCase):
    def test_hash(self):
        self.assertEqual(compute_hash(""), "47DEQpj8HBSa+/TImW+5JCeuQeRkm5NMpJWZG3hSuFU=")
        self.assertEqual(
            compute_hash(b"", "SHA-256", encoding="hex"),
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855",
        )
        self.assertEqual(len(b64decode(compute_hash("abc", "SHA512"))), 64)
        with self.assertRaises(UnsupportedAlgorithmError):
            compute_hash("abc", "MD5")
        with self.assertRaisesRegex(UnsupportedAlgorithmError, "Unrecognized output encoding"):
            compute_hash("abc", encoding="base32")

    def test_hmac(self):
        self.assertEqual(
            compute_hmac("The quick brown fox jumps over the lazy dog", "key", "SHA256", encoding="hex"),
            "f7bc83f430538424b13298e6aa6fb143ef4d59a14946175997479dbc2d1a3cd8",
        )
        with self.assertRaisesRegex(InvalidInput, "must not be empty"):
            compute_hmac("data", "")


class TestCipherEngine(LoadExampleKeys, unittest.TestCase):
    message = "message" * 7

    def test_symmetric(self):
        engine = CipherEngine()
        for algorithm, key in ("AES", b"k" * 16), ("AES-GCM", "k" * 32), ("ChaCha20-Poly1305", b"c" * 32):
            for message in self.message, "Grüße, мир", "":
                encrypted = engine.encrypt(message, "symmetric", key, algorithm)
                self.assertNotEqual(encrypted, message)
                self.assertEqual(engine.decrypt(encrypted, "symmetric", key, algorithm), message)
            self.assertNotEqual(
                engine.encrypt(self.message, "symmetric", key, algorithm),
                engine.encrypt(self.message, "symmetric", key, algorithm),
            )

    def test_symmetric_failures(self):
        engine = CipherEngine()
        encrypted = engine.encrypt(self.message, "symmetric", b"k" * 16, "AES")
        with self.assertRaisesRegex(DecryptionError, "authentication failed"):
            engine.decrypt(encrypted, "symmetric", b"x" * 16, "AES")
        raw = bytearray(b64decode(encrypted))
        raw[-1] ^= 1
        with self.assertRaises(DecryptionError):
            engine.decrypt(b64encode(bytes(raw)), "symmetric", b"k" * 16, "AES")
        with self.assertRaisesRegex(DecryptionError, "too short"):
            engine.decrypt(b64encode(b"short"), "symmetric", b"k" * 16, "AES")
        with self.assertRaisesRegex(DecryptionError, "not valid base64"):
            engine.decrypt("***", "symmetric", b"k" * 16, "AES")
        with self.assertRaises(KeyFormatError):
            engine.encrypt(self.message, "symmetric", b"k" * 16, "ChaCha20-Poly1305")
        with self.assertRaises(KeyFormatError):
            engine.encrypt(self.message, "symmetric", self.key, "AES")
        with self.assertRaisesRegex(UnsupportedAlgorithmError, "cannot be used in symmetric mode"):
            engine.encrypt(self.message, "symmetric", b"k" * 16, "RSA")
        with self.assertRaises(UnsupportedAlgorithmError):
            engine.encrypt(self.message, "symmetric", b"k" * 16, "DES")
        with self.assertRaises(UnsupportedAlgorithmError):
            engine.encrypt(self.message, "hybrid", b"k" * 16, "AES")

    def test_asymmetric(self):
        engine = CipherEngine()
        public_key = self.key.public_key()
        long_message = self.message * 12
        for algorithm in "RSA", "RSA-PKCS1":
            for message in self.message, long_message:
                encrypted = engine.encrypt(message, "asymmetric", public_key, algorithm)
                self.assertEqual(engine.decrypt(encrypted, "asymmetric", self.key, algorithm), message)
        self.assertEqual(len(b64decode(engine.encrypt(long_message, "asymmetric", public_key, "RSA"))), 4 * 256)
        self.assertEqual(len(b64decode(engine.encrypt(long_message, "asymmetric", public_key, "RSA-PKCS1"))), 3 * 256)

        public_pem = public_key.public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo)
        private_pem = self.key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
        private_der = self.key.private_bytes(Encoding.DER, PrivateFormat.PKCS8, NoEncryption())
        encrypted = engine.encrypt(long_message, "asymmetric", public_pem, "RSA")
        self.assertEqual(engine.decrypt(encrypted, "asymmetric", private_pem.decode(), "RSA"), long_message)
        self.assertEqual(engine.decrypt(encrypted, "asymmetric", private_der, "RSA"), long_message)
        encrypted = engine.encrypt(self.message, "asymmetric", self.cert.public_bytes(Encoding.PEM), "RSA")
        self.assertEqual(engine.decrypt(encrypted, "asymmetric", self.key, "RSA"), self.message)

    def test_asymmetric_failures(self):
        engine = CipherEngine()
        encrypted = engine.encrypt(self.message, "asymmetric", self.key.public_key(), "RSA")
        with self.assertRaises(DecryptionError):
            engine.decrypt(encrypted, "asymmetric", self.other_key, "RSA")
        with self.assertRaisesRegex(DecryptionError, "256 byte blocks"):
            engine.decrypt(b64encode(b64decode(encrypted)[:-1]), "asymmetric", self.key, "RSA")
        with self.assertRaisesRegex(KeyFormatError, "legacy_key_order"):
            engine.encrypt(self.message, "asymmetric", self.key, "RSA")
        with self.assertRaisesRegex(KeyFormatError, "got a public key"):
            engine.decrypt(encrypted, "asymmetric", self.key.public_key(), "RSA")
        with self.assertRaises(KeyFormatError):
            engine.encrypt(self.message, "asymmetric", "garbage", "RSA")
        with self.assertRaisesRegex(UnsupportedAlgorithmError, "cannot be used in asymmetric mode"):
            engine.encrypt(self.message, "asymmetric", self.key.public_key(), "AES")

    def test_legacy_key_order(self):
        engine = CipherEngine(legacy_key_order=True)
        for message in self.message, self.message * 12:
            encrypted = engine.encrypt(message, "asymmetric", self.key, "RSA-PKCS1")
            self.assertEqual(engine.decrypt(encrypted, "asymmetric", self.key.public_key(), "RSA-PKCS1"), message)
            self.assertEqual(engine.decrypt(encrypted, "asymmetric", self.cert, "RSA-PKCS1"), message)
        private_pem = self.key.private_bytes(Encoding.PEM, PrivateFormat.TraditionalOpenSSL, NoEncryption())
        encrypted = engine.encrypt(self.message, "asymmetric", private_pem, "RSA-PKCS1")
        self.assertEqual(
            engine.decrypt(encrypted, "asymmetric", self.cert.public_bytes(Encoding.PEM), "RSA-PKCS1"), self.message
        )
        with self.assertRaises(DecryptionError):
            engine.decrypt(encrypted, "asymmetric", self.other_key.public_key(), "RSA-PKCS1")
        with self.assertRaisesRegex(DecryptionError, "invalid PKCS #1 block"):
            engine.decrypt(b64encode(b"\x00" + b"\x01" * 255), "asymmetric", self.key.public_key(), "RSA-PKCS1")
        with self.assertRaises(DecryptionError):
            engine.decrypt(b64encode(b"\xff" * 256), "asymmetric", self.key.public_key(), "RSA-PKCS1")
        with self.assertRaisesRegex(KeyFormatError, "got a public key"):
            engine.encrypt(self.message, "asymmetric", self.key.public_key(), "RSA-PKCS1")
        for method in engine.encrypt, engine.decrypt:
            with self.assertRaisesRegex(UnsupportedAlgorithmError, "cannot be used with legacy_key_order"):
                method(self.message, "asymmetric", self.key, "RSA")
        symmetric = engine.encrypt(self.message, "symmetric", b"k" * 16, "AES")
        self.assertEqual(engine.decrypt(symmetric, "symmetric", b"k" * 16, "AES"), self.message)


if __name__ == "__main__":
    unittest.main()
