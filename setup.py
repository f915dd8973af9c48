from setuptools import find_packages, setup

setup(
    name="rental-engine",
    version="0.1.0",
    packages=find_packages(include=["rental_engine", "rental_engine.*"]),
    package_dir={"": "."},
    python_requires=">=3.10",
    install_requires=[
        "sqlalchemy>=2.0.0",
        "loguru>=0.7.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "fastapi>=0.110.0",
        "uvicorn>=0.27.0",
        "pybreaker>=1.0.0",
        "cachetools>=5.3.0",
        "prometheus-client>=0.19.0",
        "prometheus-fastapi-instrumentator>=6.1.0",
    ],
    extras_require={
        "postgres": ["psycopg2-binary>=2.9.0"],
        "test": ["pytest>=7.4.0", "httpx>=0.25.0"],
    },
    entry_points={
        "console_scripts": [
            "rental-engine-api=rental_engine.main:main",
            "rental-engine-rollover=rental_engine.workers.rollover:main",
        ],
    },
)
