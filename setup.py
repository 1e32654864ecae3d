from setuptools import setup, find_packages

with open("README.md") as f:
    readme = f.read()

with open("medtrace/__init__.py") as f:
    for line in f:
        if line.startswith("__version__"):
            version = line.split('"')[1]

setup(
    name="medtrace",
    version=version,
    description="MedTrace - Provisioning a Hyperledger Fabric test network and its chaincode",
    long_description=readme,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=("tests", "*.tests", "*.tests.*")),
    include_package_data=True,
    keywords=["medtrace", "hyperledger", "fabric", "blockchain", "chaincode"],
    license="Apache License v2.0",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Operating System :: POSIX",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Topic :: Utilities",
        "License :: OSI Approved :: Apache Software License",
    ],
    entry_points={
        "console_scripts": [
            "medtrace-network=medtrace.cli.main:main_network",
            "medtrace-chaincode=medtrace.cli.main:main_chaincode",
        ]
    },
    install_requires=[
        "PyYAML>=5.3.1",
        "docker>=4.1.0",
        "prompt_toolkit>=3.0.6",
    ],
    extras_require={"test": ["pytest"]},
    python_requires=">=3.8",
    setup_requires=["setuptools>=41.1.0"],
)
