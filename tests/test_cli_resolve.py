"""Tests for cli.resolve_package_dir, the argparse type for package arguments."""

import argparse
import os

import pytest

from flood_evac.cli import resolve_package_dir


@pytest.fixture
def package(tmp_path):
    (tmp_path / "scenario.json").write_text("{}")
    return tmp_path


@pytest.mark.parametrize("relative", ["", "scenario.json"])
def test_directory_or_scenario_file(package, relative):
    assert resolve_package_dir(str(package / relative)) == str(package)


def test_directory_need_not_hold_scenario_yet(tmp_path):
    assert resolve_package_dir(str(tmp_path)) == str(tmp_path)


def test_relative_path_made_absolute(package, monkeypatch):
    monkeypatch.chdir(package)
    assert resolve_package_dir("scenario.json") == str(package)
    assert os.path.isabs(resolve_package_dir("."))


def test_other_json_rejected(package):
    (package / "roads.geojson").write_text("{}")
    with pytest.raises(argparse.ArgumentTypeError, match="Expected scenario.json"):
        resolve_package_dir(str(package / "roads.geojson"))


def test_missing_path_rejected(tmp_path):
    with pytest.raises(argparse.ArgumentTypeError, match="does not exist"):
        resolve_package_dir(str(tmp_path / "nowhere" / "scenario.json"))
