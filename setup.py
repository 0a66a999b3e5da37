from pathlib import Path

from setuptools import find_packages, setup

with open("regionkit/version.py") as file:
    version_info = dict(
        line.replace(" ", "").replace('"', "").strip().split("=")
        for line in file
        if "=" in line
    )

with open("requirements.txt") as file:
    install_requires = file.read().splitlines()

tests_require = [
    "pytest",
    "black",
    "pytest-cov",
]

setup(
    name="regionkit",
    version=version_info["__version__"],
    description="Assign point observations to polygonal regions, aggregate them per region and classify the aggregates for choropleth maps.",
    long_description=(Path(__file__).parent / "README.md").read_text(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
    ],
    packages=find_packages(include=["regionkit", "regionkit.*"]),
    include_package_data=True,
    python_requires=">=3.8",
    install_requires=install_requires,
    tests_require=tests_require,
    extras_require={"test": tests_require},
)
