from setuptools import setup, find_packages

setup(
    name="raidnode",
    version="0.1.0",
    packages=find_packages(include=["raidnode", "raidnode.*"]),
    install_requires=[
        "aiohttp>=3.8.0",
        "prometheus-client>=0.16.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.18.0",
        ],
    },
    python_requires=">=3.10",
)
