import os

from setuptools import find_packages, setup


def main():
    with open(os.path.join(os.path.dirname(__file__), "charon", "VERSION")) as fd:
        version = fd.read().strip()

    if "DEV_MODE" in os.environ:
        version += ".dev1"

    packages = find_packages(include=["charon", "charon.*"], )
    package_data = {
        "charon": [
            "VERSION",
        ],
    }
    install_requires = [
        "aiohttp>=3.8.5",
        "async-timeout>=4.0.2,<5",
        "pydantic>=2",
        "solana>=0.34,<0.40",
        "solders>=0.21",
        "stellar-sdk[aiohttp]>=9.0",
    ]
    extras_require = {
        "test": [
            "pytest>=7.4",
        ],
    }

    setup(name="charon",
          version=version,
          description="Charon: lock and mint bridge from the Stellar network to Solana",
          license="Apache 2.0",
          packages=packages,
          package_data=package_data,
          python_requires=">=3.9",
          install_requires=install_requires,
          extras_require=extras_require,
          )


if __name__ == "__main__":
    main()
