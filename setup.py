"""
Setup script for the Copilot PR Nudger.
"""

from setuptools import find_packages, setup

with open("README.md", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="copilot-nudger",
    version="0.1.0",
    author="Copilot PR Nudger",
    author_email="support@example.com",
    description="Keeps GitHub Copilot coding agent pull requests moving",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/your-org/copilot-nudger",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Version Control :: Git",
    ],
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.100.0",
        "uvicorn[standard]>=0.29.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "PyGithub>=2.1.0",
        "httpx>=0.24.0",
        "structlog>=23.0.0",
        "python-dotenv>=1.0.0",
        "cryptography>=40.0.0",
        "PyJWT>=2.8.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.20.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "ruff>=0.1.0",
            "pre-commit>=3.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "copilot-nudger=copilot_nudger.main:main",
        ],
    },
)
