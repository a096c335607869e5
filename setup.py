from pathlib import Path
from setuptools import setup, find_packages

HERE = Path(__file__).resolve().parent


def _parse_requirements(path: str) -> list[str]:
    req_path = HERE / path
    if not req_path.exists():
        return []
    lines = req_path.read_text().splitlines()
    return [l.strip() for l in lines if l.strip() and not l.strip().startswith("#")]


setup(
    name="scholar_search",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src", include=["scholar_search*"]),
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=_parse_requirements("requirements-runtime.txt"),
    extras_require={"test": _parse_requirements("requirements-test.txt")},
    entry_points={
        "console_scripts": ["scholar-search=scholar_search.main:main"],
    },
)
