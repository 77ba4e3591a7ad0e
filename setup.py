"""Set-up file for porefv for installations using ``pip install .``"""
from setuptools import find_packages, setup


with open("requirements.txt") as f:
    required = f.read().splitlines()


setup(
    name="porefv",
    version="0.1.0",
    license="GPL",
    keywords=["porous media simulation finite volume assembly"],
    install_requires=required,
    extras_require={
        "testing": ["pytest>=7"],
        "mpi": ["mpi4py"],
    },
    description=(
        "Element-wise assembly of implicit finite volume discretizations of flow in "
        "porous media"
    ),
    platforms=["Linux", "Windows", "Mac OS-X"],
    python_requires=">=3.9",
    packages=find_packages("src"),
    package_dir={"": "src"},
    zip_safe=False,
)
