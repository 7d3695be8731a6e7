from setuptools import find_packages, setup
from pathlib import Path

setup(
    name="annotation_lifecycle",
    version=Path("./annotation_lifecycle/VERSION").read_text().strip(),
    packages=find_packages(include=["annotation_lifecycle", "annotation_lifecycle.*"]),
    package_data={"annotation_lifecycle": ["VERSION"]},
    python_requires=">=3.8",
    install_requires=[
        "numpy",
        "easydict",
        "requests",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "annotation_lifecycle=annotation_lifecycle.cli:main",
        ],
    },
)
