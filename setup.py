# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.

from setuptools import setup
from os import path

PACKAGE_NAME = "ledger_fixtures"

path_here = path.abspath(path.dirname(__file__))

with open(path.join(path_here, "README.md"), encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="ledger-fixtures",
    version="0.1.0",
    description="Disposable, container-backed ledger nodes for integration tests",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="Apache License 2.0",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Topic :: Software Development :: Testing",
    ],
    packages=[PACKAGE_NAME],
    python_requires=">=3.8",
    install_requires=[
        "docker",
        "loguru",
        "requests",
    ],
    extras_require={"test": ["pytest"]},
)
