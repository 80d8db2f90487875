""" Setup script for the Suno gateway package """
from setuptools import setup, find_packages

setup(
    name="suno-gateway",
    version="0.1.0",
    description="Fingerprinted transport, Clerk session handling and captcha solving for the Suno API",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.0.0",
        "requests>=2.31.0",
        "curl_cffi>=0.7.0",
        "playwright>=1.40.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
)
