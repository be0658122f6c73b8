from setuptools import setup, find_packages

setup(
    name="workflow-engine",
    version="0.1.0",
    description="Declarative workflow execution engine with dependency and pointer scheduling",
    author="Workflow Engine Team",
    packages=find_packages(include=["config*", "utils*", "workflow_engine*"]),
    install_requires=[
        "pydantic>=2.0.0",
        "psutil>=5.9.0",
        "pyyaml>=6.0",
        "RestrictedPython>=7.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "black>=22.0.0",
            "isort>=5.0.0",
        ],
    },
    python_requires=">=3.8",
)
