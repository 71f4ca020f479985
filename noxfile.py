"""Nox sessions for ffprog development tasks."""

from __future__ import annotations

import sys

import nox

nox.options.error_on_missing_interpreters = False
nox.options.sessions = ["lint", "typecheck", "tests", "property"]


@nox.session
def lint(session: nox.Session) -> None:
    """Run ruff linting and formatting checks."""
    session.install("ruff")
    session.run("ruff", "check", ".")
    session.run("ruff", "format", "--check", ".")


@nox.session(name="lint-fix")
def lint_fix(session: nox.Session) -> None:
    """Apply ruff fixes and formatting."""
    session.install("ruff")
    session.run("ruff", "check", "--fix", ".")
    session.run("ruff", "format", ".")


@nox.session
def tests(session: nox.Session) -> None:
    """Example-based tests; ffmpeg-backed tests are skipped."""
    session.install("-e", ".[dev]")
    session.run("pytest", "-q", "-m", "not property", env={"FFPROG_CI": "1"})


@nox.session(name="property")
def property_tests(session: nox.Session) -> None:
    """Hypothesis properties for parser, metrics and the record format."""
    session.install("-e", ".[dev]")
    session.run("pytest", "-q", "-m", "property", *session.posargs)


@nox.session
def integration(session: nox.Session) -> None:
    """Run against the ffmpeg found on PATH."""
    session.install("-e", ".[dev]")
    session.run("pytest", "-q", "-m", "ffmpeg")


@nox.session
def typecheck(session: nox.Session) -> None:
    session.install("-e", ".[dev]")
    session.run("mypy")


@nox.session
def coverage(session: nox.Session) -> None:
    """Run coverage reporting."""
    session.install("-e", ".[dev]")
    session.run(
        "coverage", "run", "--source=ffprog", "-m", "pytest", env={"FFPROG_CI": "1"}
    )
    session.run("coverage", "report", "--fail-under=80", "-m")


@nox.session
def build(session: nox.Session) -> None:
    """Build sdist and wheel artifacts."""
    session.install("build")
    session.run("python", "-m", "build")


@nox.session
def smoke(session: nox.Session) -> None:
    """Install the package and check the console script starts."""
    session.install(".")
    session.run("ffprog", "--help")
    session.run("ffprog", "run", "--help")
    session.run("ffprog", "replay", "--help")


# --------------------------------------------------
#                  LOCAL DEV TESTING
# --------------------------------------------------


@nox.session(name="dev", venv_backend="none")
def dev(session: nox.Session) -> None:
    """Fast local lint, typecheck and tests using the active venv."""
    session.run(sys.executable, "-m", "ruff", "check", "--fix", ".", external=True)
    session.run(sys.executable, "-m", "ruff", "format", ".", external=True)
    session.run(sys.executable, "-m", "mypy", external=True)
    session.run(sys.executable, "-m", "pytest", "-q", "-x", external=True)
