"""
Bootstrap for the estimation workflow: the results directory and the
numerical stack it needs.

Distribution names are checked through package metadata, so nothing is
imported or installed here.
"""

from __future__ import annotations

import re
from importlib import metadata
from pathlib import Path
from typing import Iterable, Mapping

RESULTS_DIR = "results"

# distribution name -> oldest release with the APIs used by empfin
MINIMUM_VERSIONS: Mapping[str, str] = {
    "numpy": "1.22",
    "pandas": "1.4",
    "scipy": "1.8",
    "statsmodels": "0.13",
}


def results_directory(base_path: Path | str = ".", name: str = RESULTS_DIR) -> Path:
    """
    Create (if needed) and return the directory the stage tables are written to.
    """
    target = Path(base_path) / name
    target.mkdir(parents=True, exist_ok=True)
    return target


def _release(version: str) -> tuple[int, ...]:
    parts = []
    for piece in version.split(".")[:3]:
        match = re.match(r"\d+", piece)
        if match is None:
            break
        parts.append(int(match.group()))
    return tuple(parts)


def installed_versions(packages: Iterable[str] = MINIMUM_VERSIONS) -> dict[str, str | None]:
    """
    Installed version of each distribution, None where it is absent.
    """
    versions = {}
    for package in packages:
        try:
            versions[package] = metadata.version(package)
        except metadata.PackageNotFoundError:
            versions[package] = None
    return versions


def check_dependencies(minimum: Mapping[str, str] = MINIMUM_VERSIONS) -> dict[str, str]:
    """
    Versions of the numerical stack; RuntimeError if a package is missing or too old.
    """
    found = installed_versions(minimum)
    problems = []
    for package, required in minimum.items():
        version = found[package]
        if version is None:
            problems.append(f"{package} (not installed)")
        elif _release(version) < _release(required):
            problems.append(f"{package} {version} < {required}")
    if problems:
        raise RuntimeError(
            "Unsatisfied dependencies: {}. Install via `pip install -e .`.".format(", ".join(problems))
        )
    return {package: str(found[package]) for package in minimum}
