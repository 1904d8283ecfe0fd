"""Package configuration for Parley Chat.

All runtime dependencies are listed in *requirements.txt* so that we maintain
a single authoritative source.  ``setup.py`` reads that file at build time and
uses it for *install_requires*.
"""

from pathlib import Path

from setuptools import find_packages, setup


def load_requirements() -> list[str]:
    req_path = Path(__file__).with_name("requirements.txt")
    with req_path.open() as fh:
        return [
            line.strip()
            for line in fh
            if line.strip() and not line.strip().startswith("#")
        ]


setup(
    name="parley_chat",
    version="0.1.0",
    description="A terminal chat client with persisted conversations and live sync",
    author="Parley Chat contributors",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    include_package_data=True,
    install_requires=load_requirements(),
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "parley=parley_chat.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
