"""Setup for the Data Market consumer node and Python SDK."""

from setuptools import find_packages, setup

setup(
    name="datamarket",
    version="0.1.0",
    description="IoT measurement data marketplace: consumer API and Python SDK",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "fastapi>=0.110.0",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "SQLAlchemy>=2.0.0",
        "cryptography>=41.0.0",
        "ecdsa>=0.18.0",
        "eth-account>=0.10.0",
        "eth-keys>=0.5.0",
        "eth-utils>=4.0.0",
        "web3>=7.0.0",
        "httpx>=0.25.0",
        "requests>=2.31.0",
        "redis>=5.0.0",
        "minio>=7.2.0",
        "prometheus-client>=0.19.0",
        "click>=8.1.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "datamarket=datamarket_api.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
