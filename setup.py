import sys
import traceback
from setuptools import find_packages, setup

def get_packages():
    """Get package list with debug information."""
    try:
        packages = find_packages(exclude=["tests", "tests.*"])
        print(f"Found packages: {packages}")
        return packages
    except Exception as e:
        print(f"Error finding packages: {e}")
        print(f"Traceback:\n{traceback.format_exc()}")
        return []

try:
    print(f"Python version: {sys.version}")

    setup(
        name="pagegen",
        version="0.1.0",
        packages=get_packages(),
        package_dir={"": "."},
        include_package_data=True,  # Ship config.yml with the package
        package_data={"pagegen": ["config.yml"]},
        install_requires=[
            # Core Dependencies
            "tenacity>=8.0.1",
            "pydantic>=2.0",
            "python-dotenv>=0.19.0",
            "pyyaml>=6.0",
            # LLM
            "litellm>=1.0.0",
            # CLI
            "rich>=10.0.0",
            "typer>=0.4.0",
        ],
        extras_require={
            "test": [
                "pytest>=6.0.0",
                "pytest-asyncio>=0.21.0",
            ],
        },
        python_requires=">=3.10",
        entry_points={
            "console_scripts": [
                "pagegen=pagegen.cli:app",
            ],
        },
    )
except Exception as e:
    print(f"Setup failed: {e}")
    print(f"Traceback:\n{traceback.format_exc()}")
    raise
