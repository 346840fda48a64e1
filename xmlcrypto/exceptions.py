"""
xmlcrypto exception types.
"""


class XMLCryptoException(Exception):
    pass


class InvalidInput(ValueError, XMLCryptoException):
    pass


class ConfigurationError(InvalidInput):
    """
    Raised when a certificate descriptor or other caller-supplied configuration is missing a required value.
    """


class UnsupportedAlgorithmError(InvalidInput):
    """
    Raised when an algorithm, method or keystore name is not recognized, or is forbidden by configuration.
    """


class KeyAlgorithmMismatchError(InvalidInput):
    """
    Raised when a key does not belong to the family required by the requested algorithm (e.g. an EC key used with
    an RSA signature method).
    """


class SelectorNoMatchError(InvalidInput):
    """
    Raised when a selector does not match any element of the input.
    """


class MalformedSignatureError(InvalidInput):
    """
    Raised when a document does not contain a recognizable signature, or the signature lacks required fields.
    This is distinct from a signature that does not validate, which is reported as ``False``.
    """


class KeyFormatError(InvalidInput):
    """
    Raised when key material cannot be loaded or is of the wrong kind for the requested operation.
    """


class KeyResolutionError(XMLCryptoException):
    """
    Raised when a keystore cannot be opened or the requested entry cannot be retrieved from it.
    """


class DecryptionError(XMLCryptoException):
    """
    Raised when a payload cannot be decrypted with the given key and algorithm.
    """
