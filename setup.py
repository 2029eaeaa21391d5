"""Setup script for the G-Match deployer."""

from setuptools import find_packages, setup

with open("requirements.txt") as f:
    requirements = f.read().splitlines()

setup(
    name="gmatch-deploy",
    version="1.0.0",
    description="Release orchestrator for the G-Match application on Kubernetes",
    author="G-Match Engineering",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "gmatch-deploy=gmatch_deploy.__main__:main",
        ],
    },
)
