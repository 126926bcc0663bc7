"""Packaging information for dbfs."""

import sys

import setuptools

from dbfs.constants import VERSION

if sys.version_info[:3] < (3, 7, 0):
    print("dbfs requires Python 3.7 to run.")
    sys.exit(1)

install_requires = [
    "fasteners>=0.15",
    "semver>=2.10.0",
]

extras_require = {
    "dev": [
        "rope>=0.14.0",
        "flake8>=3.7.9",
        "flake8-docstrings>=1.5.0",
        "flake8-import-order>=0.18.1",
        "black>=19.10b0",
        "pylint>=2.4.4",
        "mypy>=0.770",
        "pytest>=5.4.1",
        "pytest-cov>=2.8.1",
    ]
}


def _long_description():
    with open("README.md") as f:
        return f.read()


setuptools.setup(
    name="dbfs",
    version=VERSION,
    description="Expose live SQL Server metadata views as files.",
    long_description=_long_description(),
    long_description_content_type="text/markdown",
    license="MIT",
    packages=setuptools.find_packages(),
    entry_points={"console_scripts": ["dbfs = dbfs.__main__:main"]},
    install_requires=install_requires,
    extras_require=extras_require,
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Environment :: Console",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.7",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
        "Topic :: Database",
        "Topic :: System :: Filesystems",
    ],
    python_requires=">=3.7",
)
