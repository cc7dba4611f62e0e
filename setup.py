"""
Setup script for the VibePhoto API
"""
from setuptools import setup, find_packages

setup(
    name="vibephoto",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    package_data={"vibephoto": ["plans.yaml"]},
    python_requires=">=3.10,<3.14",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn[standard]>=0.27",
        "sqlalchemy>=2.0,<2.1",
        "psycopg2-binary>=2.9",
        "alembic>=1.13",
        "pydantic>=2.5",
        "email-validator>=2.1",
        "python-jose[cryptography]>=3.3",
        "passlib>=1.7.4",
        "bcrypt>=4.0",
        "httpx>=0.26",
        "boto3>=1.34",
        "apscheduler>=3.10,<4",
        "python-dotenv>=1.0",
        "pyyaml>=6.0",
        "Pillow>=10.0",
    ],
    extras_require={
        "tests": [
            "pytest>=7.4",
        ],
    },
)
