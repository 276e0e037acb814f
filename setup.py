#!/usr/bin/env python3
"""
Setup script for bulksms.
"""

from setuptools import setup, find_packages

setup(
    name="bulksms",
    version="0.1.0",
    description="Bulk SMS gateway and campaign scheduler for USB cellular modems",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=[
        "pyserial>=3.5",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-cov>=4.1.0",
            "pytest-timeout>=2.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "bulksms-cli=bulksms.cli:main",
        ],
    },
    keywords=["sms", "bulk-sms", "gateway", "modem", "at-commands", "gsm", "scheduler"],
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Communications :: Telephony",
        "Operating System :: POSIX :: Linux",
        "License :: OSI Approved :: MIT License",
    ],
)
