"""Setup configuration for mqtl package"""

from setuptools import setup, find_packages

setup(
    name="mqtl",
    version="0.1.0",
    author="mqtl Development Team",
    description="Metabolite QTL mapping: metabolite cleaning, Bonferroni variant selection and parallel pairwise regression",
    long_description=open("README.md").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(include=["mqtl", "mqtl.*"]),
    install_requires=[
        "numpy>=1.19.0",
        "scipy>=1.6.0",
        "pandas>=1.2.0",
        "matplotlib>=3.3.0",
        "tqdm>=4.60.0",
    ],
    extras_require={
        # Reference OLS fits used by the parity tests
        "test": [
            "pytest>=7.0",
            "statsmodels>=0.12.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "mqtl-run=mqtl.cli.utils:main",
        ],
    },
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
    ],
)
