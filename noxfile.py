"""Nox automation sessions for ocr_cleaner."""

from __future__ import annotations

import nox

nox.options.sessions = ("lint", "typecheck", "tests")
nox.options.reuse_existing_virtualenvs = True


def _install_project(session: nox.Session) -> None:
    session.install("-e", ".[test]")


@nox.session()
def lint(session: nox.Session) -> None:
    session.install("black", "flake8")
    session.run("black", "--check", "ocr_cleaner", "tests")
    session.run("flake8", "--max-line-length", "100", "ocr_cleaner", "tests")


@nox.session()
def typecheck(session: nox.Session) -> None:
    session.install("mypy", "types-PyYAML")
    _install_project(session)
    session.run("mypy", "ocr_cleaner")


@nox.session()
def tests(session: nox.Session) -> None:
    _install_project(session)
    session.run("pytest", "tests")
