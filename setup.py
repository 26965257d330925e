from setuptools import setup, find_packages

setup(
    name="seo_geo_checker",
    version="1.0.0",
    packages=find_packages(where=".", exclude=["tests", "tests.*"]),
    package_dir={"": "."},
    python_requires=">=3.9",
    install_requires=[
        "fastapi",
        "uvicorn",
        "python-dotenv",
        "httpx",
        "pydantic>=2",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ]
    }
)
