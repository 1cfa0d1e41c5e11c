from setuptools import setup, find_packages

setup(
    name="wikicrawl",
    version="0.4.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.0.0",
        "psycopg2-binary>=2.9.0",
        "tenacity",
        "aiohttp>=3.9.0",
        "beautifulsoup4>=4.12.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
)
