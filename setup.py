# This should be only one line. If it must be multi-line, indent the second
# line onwards to keep the PKG-INFO file format intact.
"""Transparent encryption of secrets committed to git repositories.
"""

from setuptools import find_packages, setup

version = open("src/repocrypt/version.txt").read().strip()

setup(
    name="repocrypt",
    version=version,
    install_requires=[
        "ConfigUpdater",
        "cryptography",
        "importlib_resources",
        "py",
        "pyrage",
        "pyyaml",
        "requests", ],
    extras_require={
        "test": [
            "mock",
            "pytest",
            "pytest-coverage",
            "pytest-instafail",
            "pytest-timeout", ]},
    entry_points="""
        [console_scripts]
            repocrypt = repocrypt.main:main
    """,
    license="BSD (2-clause)",
    keywords="encryption git secrets",
    classifiers="""\
License :: OSI Approved :: BSD License
Programming Language :: Python
Programming Language :: Python :: 3
Programming Language :: Python :: 3 :: Only
"""[:-1].split("\n"),
    description=__doc__.strip(),
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    packages=find_packages("src"),
    package_dir={"": "src"},
    include_package_data=True,
    zip_safe=False,
    python_requires=">=3.8")
