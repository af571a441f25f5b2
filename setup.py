from setuptools import setup, find_packages

setup(
    name="order_engine",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pydantic>=2.5.0",
        "tqdm",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "httpx>=0.24",
        ],
    },
    entry_points={
        "console_scripts": [
            "order-engine=order_engine.cli.main:main",
        ],
    },
)
