from typing import List, Optional, Union

from .algorithms import CanonicalizationMethod
from .processor import XMLProcessor


class Canonicalizer(XMLProcessor):
    """
    Produces the canonical byte serialization of an XML node.

    The input is re-parsed before canonicalization: entities are refused and indentation between elements is dropped,
    so two documents that differ only in attribute order, insignificant whitespace or the placement of namespace
    declarations canonicalize to the same bytes (with the exclusive methods, unused declarations are dropped as well).
    """

    def canonicalize(
        self,
        node,
        method: Union[CanonicalizationMethod, str] = CanonicalizationMethod.CANONICAL_XML_1_0,
        inclusive_ns_prefixes: Optional[List[str]] = None,
    ) -> bytes:
        """
        :param node: An lxml or ElementTree element, or XML text.
        :param method:
            A :class:`CanonicalizationMethod`, its URI, or one of the short names ``inclusive``, ``exclusive``,
            ``inclusive-with-comments`` and ``exclusive-with-comments``.
        :param inclusive_ns_prefixes:
            With exclusive canonicalization, namespace prefixes whose declarations are kept even when unused
            (**InclusiveNamespaces PrefixList**).
        :raises: :class:`xmlcrypto.exceptions.UnsupportedAlgorithmError` for unknown methods.
        """
        method = CanonicalizationMethod.from_name(method)
        return self._c14n(self.get_root(node), algorithm=method, inclusive_ns_prefixes=inclusive_ns_prefixes)
