from setuptools import setup, find_packages

setup(
    name="flowtutor-core",
    version="1.0.0",
    packages=find_packages(exclude=["flowtutor.tests", "flowtutor.tests.*"]),
    install_requires=[
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "python-dotenv>=0.19.0",
        "PyYAML>=6.0",
        "sqlalchemy[asyncio]>=2.0.0",
        "redis>=5.0.1",
        "tzdata>=2023.3",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "aiosqlite>=0.19.0",
        ],
    },
    python_requires=">=3.9",
)
