from setuptools import setup, find_namespace_packages

setup(
    name="fem-immersed",
    version="0.1.0",
    description="Immersed finite element method for elastic bodies in incompressible fluids",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src", include=["fem_immersed*"]),
    python_requires=">=3.10",
    install_requires=[
        "numpy",
        "scipy",
        "meshio",
        "pyyaml",
        "sympy",
        "matplotlib",
        "polars",
    ],
    extras_require={"test": ["pytest"]},
    entry_points={
        "console_scripts": ["run-ifem=fem_immersed.cli.run_ifem:main"],
    },
)
