"""
Setup Configuration for scanmc
==============================

Installation options:
- pip install scanmc          # sampling engine, HDF5 output, YAML configs
- pip install scanmc[dev]     # test tooling
"""

from pathlib import Path

from setuptools import find_packages, setup

# Get the directory containing setup.py
HERE = Path(__file__).parent.resolve()


def read_readme():
    """Read README file for long description."""
    readme_path = HERE / "README.md"
    if readme_path.exists():
        return readme_path.read_text(encoding="utf-8")
    return "MCMC and Population Monte Carlo parameter scans for black-box likelihoods"


def read_version():
    """Read version from scanmc/_version.py."""
    version_path = HERE / "scanmc" / "_version.py"
    if version_path.exists():
        with open(version_path, encoding="utf-8") as f:
            for line in f:
                if line.startswith("version"):
                    return line.split("=")[1].strip().strip("\"'")
    return "0.1.0"


INSTALL_REQUIRES = [
    "numpy>=1.23.0",
    "scipy>=1.9.0",
    "h5py>=3.1.0",
    "pyyaml>=5.4.0",
    "tqdm>=4.60.0",
]

EXTRAS_REQUIRE = {
    "dev": [
        "pytest>=6.2.0",
        "pytest-cov>=2.12.0",
    ],
}

EXTRAS_REQUIRE["all"] = sorted(set(sum(EXTRAS_REQUIRE.values(), [])))

ENTRY_POINTS = {
    "console_scripts": [
        "scanmc=scanmc.cli.main:main",
    ]
}

CLASSIFIERS = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Topic :: Scientific/Engineering :: Physics",
    "License :: OSI Approved :: MIT License",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Operating System :: OS Independent",
]

KEYWORDS = [
    "mcmc", "population monte carlo", "importance sampling", "bayesian",
    "parameter inference", "gelman-rubin", "scientific computing",
]


setup(
    name="scanmc",
    version=read_version(),
    description="MCMC and Population Monte Carlo parameter scans for black-box likelihoods",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests*", "docs*", "examples*"]),
    install_requires=INSTALL_REQUIRES,
    extras_require=EXTRAS_REQUIRE,
    python_requires=">=3.10",
    entry_points=ENTRY_POINTS,
    classifiers=CLASSIFIERS,
    keywords=KEYWORDS,
    license="MIT",
    zip_safe=False,
    platforms=["any"],
)
