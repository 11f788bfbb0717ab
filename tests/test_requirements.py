"""Keeps requirements*.txt, pyproject.toml and the installed environment in sync."""

import importlib.metadata
import re
import tomllib
from pathlib import Path

import pytest

ROOT = Path(__file__).parent.parent

# Import name -> distribution name for every third-party package the code imports
IMPORTED_DISTRIBUTIONS = {
    'flask': 'flask',
    'flask_socketio': 'flask-socketio',
}


def _clean_string(req):
    """Normalizes a requirement string (lowercase and removes spaces)."""
    return req.strip().lower().replace(" ", "")


def _name(req):
    return re.sub(r'\[.*\]', '', re.split(r'==|>=|~=|<=|>|<', req)[0]).strip()


def parse_txt_requirements(file_path):
    """Extracts full requirement strings (name + version) from a .txt file."""
    if not file_path.exists():
        return set()
    packages = set()
    with open(file_path, "r") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith(("#", "-e", "git+", "-r")):
                continue
            packages.add(_clean_string(line))
    return packages


@pytest.fixture(scope='module')
def pyproject():
    with open(ROOT / "pyproject.toml", "rb") as f:
        return tomllib.load(f)["project"]


def test_runtime_requirements_match(pyproject):
    toml_main = {_clean_string(r) for r in pyproject.get("dependencies", [])}
    assert parse_txt_requirements(ROOT / "requirements.txt") == toml_main


def test_dev_requirements_match(pyproject):
    toml_dev = {_clean_string(r) for r in pyproject.get("optional-dependencies", {}).get("dev", [])}
    assert parse_txt_requirements(ROOT / "requirements-dev.txt") == toml_dev


def test_imported_packages_are_declared(pyproject):
    declared = {_name(_clean_string(r)) for r in pyproject.get("dependencies", [])}
    missing = set(IMPORTED_DISTRIBUTIONS.values()) - declared
    assert not missing, f"Imported but not declared: {missing}"


def test_environment_satisfies_requirements():
    """Every declared package is installed, at the pinned version if pinned."""
    declared = (
        parse_txt_requirements(ROOT / "requirements.txt")
        | parse_txt_requirements(ROOT / "requirements-dev.txt")
    )
    problems = []
    for req in declared:
        name = _name(req)
        try:
            installed = importlib.metadata.version(name)
        except importlib.metadata.PackageNotFoundError:
            problems.append(f"{name} (Not installed)")
            continue
        if "==" in req and installed != req.split("==")[1]:
            problems.append(f"{name} (Installed: {installed}, Expected: {req.split('==')[1]})")

    if problems:
        pytest.fail("Environment out of sync with requirements:\n" + "\n".join(problems))
