#!/usr/bin/env python

from setuptools import find_packages, setup

setup(
    name="xmlcrypto",
    version="1.0.0",
    url="https://github.com/xmlcrypto/xmlcrypto",
    license="Apache Software License",
    author="xmlcrypto contributors",
    description="XML Signature generation and validation, and payload encryption, for query runtimes",
    long_description=open("README.rst").read(),
    python_requires=">=3.8",
    install_requires=[
        "lxml >= 5.2.1, < 7",
        "cryptography >= 43",  # Required for pkcs12.load_pkcs12 and x509.load_pem_x509_certificates
        "pyjks >= 20.0.0",  # Required for JKS and JCEKS keystores
    ],
    extras_require={
        "tests": [
            "ruff",
            "coverage",
            "build",
            "wheel",
            "mypy",
            "lxml-stubs",
        ]
    },
    packages=find_packages(exclude=["test"]),
    platforms=["MacOS X", "Posix"],
    package_data={"xmlcrypto": ["py.typed"]},
    include_package_data=True,
    test_suite="test",
    classifiers=[
        "Intended Audience :: Developers",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: MacOS :: MacOS X",
        "Operating System :: POSIX",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
)
