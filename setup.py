from setuptools import setup, find_packages

setup(
    name="xview_reco",
    version="0.1.0",
    description="Cross-view matching and repair of 2D clusters in three wire-plane views",
    author="Your Name",
    author_email="your.email@example.com",
    packages=find_packages(include=["xview_reco", "xview_reco.*"]),
    python_requires=">=3.10",
    install_requires=[
        # Runtime dependencies
        "numpy",
        "pandas",
        "matplotlib",
        "scipy",
        "orjson",
    ],
    extras_require={
        # Developer extras
        "dev": [
            "pytest",
            "black",
            "mypy",
        ],
    },
    entry_points={
        "console_scripts": [
            # CLI entry point for running main.py
            "xview-reco=xview_reco.main:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
