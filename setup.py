import os.path as op

from setuptools import find_packages, setup

VERSION = "0.1.0"


def read_long_description():
    """
    Use the README as long description when it is available
    """
    readme = op.join(op.dirname(op.abspath(__file__)), "README.md")
    if not op.isfile(readme):
        return ""
    with open(readme, encoding="utf-8") as f:
        return f.read()


opts = dict(
    name="tractview-python",
    version=VERSION,
    description="Decoders for the TRK, TCK and TRX tractography formats",
    long_description=read_long_description(),
    long_description_content_type="text/markdown",
    python_requires=">=3.9",
    packages=find_packages(include=["tractview", "tractview.*"]),
    install_requires=[
        "numpy>=1.22",
        "nibabel>=5",
        "typer>=0.9",
    ],
    extras_require={
        "test": [
            "deepdiff",
            "pytest>=7",
            "pytest-console-scripts>=0",
        ],
    },
    entry_points={
        "console_scripts": [
            "tractview=tractview.cli:main",
            "tractview_info=tractview.cli:info_cmd",
            "tractview_sample=tractview.cli:sample_cmd",
        ],
    },
)


if __name__ == '__main__':
    setup(**opts)
