import os
from setuptools import setup


__version__ = "0.1.0"

long_description = ""
this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, "README.md"), "r", encoding="utf-8") as f:
    long_description = f.read()


setup(
    name="MaximalLotteries",
    version=__version__,
    description="Maximal lotteries for Condorcet elections via zero-sum margin games",
    long_description=long_description,
    long_description_content_type="text/markdown",
    py_modules=["maximal_lotteries"],
    install_requires=[
        "numpy",
        "numba",
        "scipy>=1.9",
    ],
    extras_require={
        "test": ["pytest"],
    },
    zip_safe=False,
    python_requires=">=3.9",
)
