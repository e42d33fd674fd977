"""Shared pytest fixtures for cinclude tests."""

import os
import shutil

import pytest

from cinclude.pipeline import HeaderRequest


@pytest.fixture
def write_header(tmp_path):
    """Write C source to a header in a temporary directory.

    Returns a function ``(source, name="test.h") -> path``.
    """

    def write(source: str, name: str = "test.h") -> str:
        path = tmp_path / name
        path.write_text(source, encoding="utf-8")
        return str(path)

    return write


@pytest.fixture
def request_for():
    """Build a HeaderRequest for header paths, with keyword overrides."""

    def build(*headers: str, **options) -> HeaderRequest:
        options.setdefault("extra_args", ())
        options["extra_args"] = tuple(options["extra_args"])
        return HeaderRequest(headers=tuple(headers), **options)

    return build


@pytest.fixture
def cxx():
    """Skip unless a C++ compiler is available for the macro probe."""
    compiler = os.environ.get("CXX", "c++")
    if shutil.which(compiler) is None:
        pytest.skip(f"{compiler} not found - the macro probe needs a C++ compiler")
    return compiler
