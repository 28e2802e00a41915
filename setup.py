from setuptools import setup, find_packages

setup(
    name="wadescript",
    version="0.1.0",
    description="WadeScript — statically typed, Python-flavored language compiled to native code via LLVM",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "llvmlite>=0.44.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "wadescript=wadescript.cli:main",
        ],
    },
)
