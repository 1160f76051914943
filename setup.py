from setuptools import setup, find_packages

setup(
    name="docqueue",
    version="0.1.0",
    description="Redis-backed background job processing for a document library",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={
        "docqueue": ["config/default_config.yaml"],
    },
    python_requires=">=3.9",
    install_requires=[
        'pyyaml',
        'sqlalchemy>=2.0',
        'pydantic>=2.0',
        'redis>=5.0.1',
        'aiohttp',
        'click',
    ],
    extras_require={
        'postgres': ['psycopg2-binary'],
        'test': [
            'pytest',
            'pytest-asyncio',
            'fakeredis>=2.20',
        ],
    },
    entry_points={
        'console_scripts': [
            'docqueue=docqueue.cli:cli',
        ],
    },
)
