from setuptools import setup, find_packages

setup(
    name="canvas-context",
    version="0.1.0",
    packages=find_packages(include=["canvas_context*"]),
    install_requires=[
        "mcp>=1.0.0,<2",
        "python-dotenv>=1.0.0",
        "requests>=2.28.0",
        "beautifulsoup4>=4.12.0",
        "pypdf>=4.0.0",
        "numpy>=1.24.0",
        "tqdm>=4.65.0",
    ],
    extras_require={
        "embeddings": [
            "sentence-transformers>=2.2.0",
        ],
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "canvas-context=canvas_context.cli:main",
            "canvas-context-mcp=canvas_context.server:main",
        ],
    },
)
