"""Setup configuration for the Role Reactor storage layer."""

from setuptools import setup, find_packages

setup(
    name="rolereactor",
    version="0.1.0",
    description="Persistent state layer for the Role Reactor Discord bot",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "motor>=3.3",
        "pymongo>=4.6",
        "py-cord>=2.5",
        "PyYAML>=6.0",
        "python-dotenv>=1.0",
        "prompt_toolkit>=3.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "rolereactor-storage=rolereactor.main:main",
        ],
    },
)
