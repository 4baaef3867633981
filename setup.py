# Copyright © 2025 Leadsmith

import re
import os
import codecs
from os import path
from io import open
from setuptools import setup, find_packages


here = path.abspath(path.dirname(__file__))

with open(path.join(here, "README.md"), encoding="utf-8") as f:
    long_description = f.read()

with codecs.open(os.path.join(here, "leadsmith/__init__.py"), encoding="utf-8") as init_file:
    version_match = re.search(r"^__version__ = ['\"]([^'\"]*)['\"]", init_file.read(), re.M)
    if not version_match:
        raise RuntimeError("Unable to find version string in leadsmith/__init__.py")
    version_string = version_match.group(1)


requirements = [
    # HTTP and networking
    "aiohttp>=3.9.5",
    "httpx>=0.28.1",

    # Configuration
    "pyyaml>=6.0.1",
    "python-dotenv>=1.0.0",

    # Data models
    "pydantic>=2.0.0",

    # Validation utilities
    "phonenumbers>=8.13.0",

    # Geographic normalization (state name -> USPS abbreviation, offline)
    "us>=3.0.0",

    # CLI
    "click>=8.1.0",
]

test_requirements = [
    "pytest>=7.0.0",
]

setup(
    name="leadsmith",
    version=version_string,
    description="Resumable lead enrichment with checkpointing, rate limiting and job tracking",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Leadsmith",
    license="MIT",
    packages=find_packages(include=["leadsmith", "leadsmith.*"]),
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={"tests": test_requirements},
    entry_points={
        "console_scripts": [
            "leadsmith=leadsmith.cli:main",
        ]
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Internet :: WWW/HTTP",
    ],
)
