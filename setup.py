from setuptools import setup, find_packages

setup(
    name="kaleidoscope-llvm",
    version="0.1.0",
    description="Kaleidoscope language front end: lexer, precedence-climbing parser and LLVM IR code generator",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    author="Kaleidoscope Project",
    python_requires=">=3.9",
    packages=find_packages(),
    install_requires=[
        "llvmlite",
    ],
    entry_points={
        "console_scripts": [
            "kaleidoscope=kaleidoscope.cli:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Topic :: Software Development :: Compilers",
    ],
)
