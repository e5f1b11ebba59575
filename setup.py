import setuptools

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setuptools.setup(
    author="Aptos Labs",
    author_email="opensource@aptoslabs.com",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
    ],
    entry_points={
        "console_scripts": ["raffle-harness=raffle_harness.main:cli"],
    },
    include_package_data=True,
    install_requires=["aptos-sdk", "click", "httpx", "tomli"],
    long_description=long_description,
    long_description_content_type="text/markdown",
    name="raffle_harness",
    packages=["raffle_harness"],
    python_requires=">=3.8",
    url="https://github.com/aptos-labs/aptos-core",
    version="0.1.0",
)
