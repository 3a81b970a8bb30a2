# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Setup configuration for the Credflow workflow engine
"""

from setuptools import setup, find_packages

setup(
    name="credflow",
    version="1.0.0",
    description="Graph workflow engine for healthcare-provider accreditation processes",
    author="Jason Cafarelli",
    package_dir={"": "backend"},
    packages=find_packages(where="backend", exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0",
        "fastapi>=0.100.0",
        "httpx>=0.24.0",
        "aiofiles>=23.0",
        "PyYAML>=6.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ]
    },
)
