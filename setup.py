# -*- coding: utf-8 -*-

import os.path

import setuptools


def readme():
    """Load README contents."""
    path = os.path.join(os.path.dirname(__file__), "README.rst")
    with open(path, encoding="utf-8") as readme:
        return readme.read()


def install_requires():
    """Determine installation requirements."""
    return [
        "docopt>=0.6.2",
        "psutil>=5.0",
    ]


setuptools.setup(
    name="python-palworld",
    version="0.1.0",
    description=("Remote console (RCON) client and command-line tool for "
                 "Palworld dedicated servers."),
    long_description=readme(),
    packages=setuptools.find_packages(exclude=["tests"]),
    install_requires=install_requires(),
    python_requires=">=3.6",
    entry_points={
        "console_scripts": [
            "palworld-rcon=palworld.cli:main",
        ],
    },
    extras_require={
        "development": [
            "pylint",
        ],
        "test": [
            "pytest>=3.6.0",
            "pytest-cov",
            "pytest-timeout",
        ],
    },
    license="MIT License",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: Implementation :: CPython",
        "Topic :: Games/Entertainment",
    ],
)
