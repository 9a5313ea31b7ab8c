from setuptools import setup, find_packages

setup(
    name="card-scheduler",
    version="1.0.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "requests>=2.32.3",
        "cryptography>=42.0.0",
        "pydantic>=2.6.0",
        "PyJWT>=2.8.0",
        "paho-mqtt>=2.0.0",
        "APScheduler>=3.10.4,<4",
    ],
    extras_require={
        "test": ["pytest>=8.0.0"],
    },
    entry_points={
        "console_scripts": [
            "card-scheduler=card_scheduler.__main__:main",
        ],
    },
    python_requires=">=3.9",
)
