import logging
from typing import Dict, List, Optional, Tuple
from xml.etree import ElementTree as stdlibElementTree

from cryptography.hazmat.primitives.asymmetric import ec
from lxml import etree

from .algorithms import CanonicalizationMethod, DigestAlgorithm
from .exceptions import InvalidInput, MalformedSignatureError, SelectorNoMatchError
from .primitives import DigestSigner
from .util import namespaces

logger = logging.getLogger(__name__)


class XMLProcessor:
    _default_parser, _parser = None, None

    @property
    def parser(self):
        if self._parser is None:
            if self._default_parser is None:
                self._default_parser = etree.XMLParser(resolve_entities=False)
            return self._default_parser
        return self._parser

    def _fromstring(self, xml_string, **kwargs):
        xml_node = etree.fromstring(xml_string, parser=self.parser, **kwargs)
        for entity in xml_node.iter(etree.Entity):
            raise InvalidInput("Entities are not supported in XML input")
        self._strip_indentation(xml_node)
        return xml_node

    def _strip_indentation(self, root):
        """
        Drop line-break indentation between the children of elements with element-only content, as written by pretty
        printers. Whitespace without a line break, whitespace in mixed content and whitespace under
        ``xml:space="preserve"`` are content and are kept.
        """
        for element in root.iter(tag=etree.Element):
            children = list(element)
            if not children:
                continue
            texts = [element.text] + [child.tail for child in children]
            if any(text and text.strip() for text in texts):
                continue
            if element.xpath("ancestor-or-self::*[@xml:space][1]/@xml:space = 'preserve'"):
                continue
            if element.text is not None and "\n" in element.text:
                element.text = None
            for child in children:
                if child.tail is not None and "\n" in child.tail:
                    child.tail = None

    def _tostring(self, xml_node, **kwargs):
        return etree.tostring(xml_node, **kwargs)

    def get_root(self, data):
        if isinstance(data, (str, bytes)):
            return self._fromstring(data)
        elif isinstance(data, stdlibElementTree.Element):
            return self._fromstring(stdlibElementTree.tostring(data, encoding="utf-8"))
        else:
            # Create a separate copy of the node so we can modify the tree and avoid any c14n inconsistencies from
            # namespaces propagating from parent nodes. lxml declares the in-scope namespaces of the ancestors on the
            # serialized copy.
            return self._fromstring(self._tostring(data, with_tail=False))

    def _c14n(self, nodes, algorithm: CanonicalizationMethod, inclusive_ns_prefixes=None):
        if not isinstance(nodes, list):
            nodes = [nodes]

        c14n = b""
        for node in nodes:
            c14n += etree.tostring(
                node,
                method="c14n",
                exclusive=algorithm.exclusive,
                with_comments=algorithm.with_comments,
                inclusive_ns_prefixes=inclusive_ns_prefixes if algorithm.exclusive else None,
            )
        logger.debug(
            "Canonicalized string (exclusive=%s, with_comments=%s): %s",
            algorithm.exclusive,
            algorithm.with_comments,
            c14n,
        )
        return c14n


class XMLSignatureProcessor(XMLProcessor):
    # See https://tools.ietf.org/html/rfc5656
    known_ecdsa_curves = {
        "urn:oid:1.2.840.10045.3.1.7": ec.SECP256R1,
        "urn:oid:1.3.132.0.34": ec.SECP384R1,
        "urn:oid:1.3.132.0.35": ec.SECP521R1,
        "urn:oid:1.3.132.0.33": ec.SECP224R1,
    }
    known_ecdsa_curve_oids = {ec().name: oid for oid, ec in known_ecdsa_curves.items()}  # type: ignore

    id_attributes: Tuple[str, ...] = ("Id", "ID", "id", "xml:id")

    def _get_digest(self, data, algorithm: DigestAlgorithm):
        return DigestSigner().digest(data, algorithm)

    def _find(self, element, query, require=True, xpath=""):
        namespace = "ds"
        if ":" in query:
            namespace, _, query = query.partition(":")
        result = element.find(f"{xpath}{namespace}:{query}", namespaces=namespaces)

        if require and result is None:
            raise MalformedSignatureError(f"Expected to find XML element {query} in {element.tag}")
        return result

    def _findall(self, element, query, xpath=""):
        namespace = "ds"
        if ":" in query:
            namespace, _, query = query.partition(":")
        return element.findall(f"{xpath}{namespace}:{query}", namespaces=namespaces)

    def _select(self, root, selector: str, selector_namespaces: Optional[Dict[str, str]] = None) -> List:
        """
        Evaluate an XPath selector against the document of **root** and return the matched elements.
        """
        try:
            results = root.xpath(selector, namespaces=selector_namespaces or None)
        except (etree.XPathEvalError, etree.XPathSyntaxError) as e:
            raise InvalidInput(f"Invalid selector {selector!r}: {e}") from e
        if not isinstance(results, list):
            raise InvalidInput(f"Selector {selector!r} must select elements, got {type(results).__name__}")
        elements = [r for r in results if isinstance(r, etree._Element) and not isinstance(r, etree._Comment)]
        if len(elements) != len(results):
            raise InvalidInput(f"Selector {selector!r} must select elements only")
        if len(elements) == 0:
            raise SelectorNoMatchError(f"Selector {selector!r} did not match any element")
        logger.debug("Selector %s matched %d element(s)", selector, len(elements))
        return elements

    def _resolve_reference(self, doc_root, reference):
        uri = reference.get("URI")
        if uri is None:
            raise MalformedSignatureError("References without URIs are not supported")
        elif uri == "":
            return doc_root
        elif uri.startswith("#xpointer("):
            raise MalformedSignatureError("XPointer references are not supported")
        elif uri.startswith("#"):
            for id_attribute in self.id_attributes:
                xpath_query = f"//*[@*[local-name() = '{id_attribute}']=$uri]"
                results = doc_root.xpath(xpath_query, uri=uri.lstrip("#"))
                if len(results) > 1:
                    raise MalformedSignatureError(f"Ambiguous reference URI {uri} resolved to {len(results)} nodes")
                elif len(results) == 1:
                    return results[0]
            raise MalformedSignatureError(f"Unable to resolve reference URI: {uri}")
        else:
            raise MalformedSignatureError(f"External URI dereferencing is not supported: {uri}")
