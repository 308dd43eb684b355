"""
Setup script for package installation
"""
from setuptools import setup, find_packages

setup(
    name="infinite_pages",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.10,<3.14",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn[standard]>=0.27",
        "sqlalchemy>=2.0",
        "psycopg2-binary>=2.9",
        "alembic>=1.13",
        "pydantic[email]>=2.5",
        "python-jose[cryptography]>=3.3",
        "passlib>=1.7.4",
        "bcrypt>=4.0",
        "stripe>=8.0",
        "httpx>=0.26",
        "anthropic>=0.34",
        "python-dotenv>=1.0",
        "redis>=5.0",
        "apscheduler>=3.10,<4",
        "python-multipart>=0.0.9",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
)
