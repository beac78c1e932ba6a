"""
python -m build
twine upload dist/*
"""

from setuptools import setup, find_packages


def sacrud_setup():
    with open("requirements.txt", "rt") as fp:
        install_requires = fp.read().strip().split("\n")

    version = "0.4.0"

    setup(
        name="sacrud",
        packages=find_packages(exclude=["tests"]),
        version=version,
        license="MIT",
        description="sacrud : SqlAlchemy entity query & mutation engine",
        long_description=open("README.rst").read(),
        keywords=["SqlAlchemy", "Flask", "CRUD", "multitenancy", "repository"],
        python_requires=">=3.8, <4",
        install_requires=install_requires,
        classifiers=[
            "Development Status :: 3 - Alpha",
            "Intended Audience :: Developers",
            "Framework :: Flask",
            "Topic :: Software Development :: Libraries",
            "Topic :: Database",
            "Programming Language :: Python :: 3.12",
            "Programming Language :: Python :: 3.11",
            "Programming Language :: Python :: 3.10",
            "Programming Language :: Python :: 3.9",
            "Programming Language :: Python :: 3.8",
        ],
        extras_require={"test": ["pytest>=7"]},
    )


sacrud_setup()  # pragma: no cover
