import nox

PYTHON_VERSIONS = ["3.11", "3.12", "3.13"]

nox.options.sessions = ["tests"]


def _install(session: nox.Session, postgres: bool = False) -> None:
    """Install the project and its test extra; ``postgres`` adds the database driver."""
    extras = "test,postgres" if postgres else "test"
    session.install("-e", f".[{extras}]")
    if postgres:
        # psycopg2 wheels can be cached for another interpreter; rebuild per session.
        session.install("--force-reinstall", "--no-cache-dir", "psycopg2-binary")


@nox.session(python=PYTHON_VERSIONS)
def tests(session: nox.Session) -> None:
    """Whole suite against the in-memory providers."""
    _install(session)
    session.run("pytest", *session.posargs)


@nox.session(python=PYTHON_VERSIONS[-1])
@nox.parametrize("layer", ["domain", "application", "integration", "bdd"])
def layer(session: nox.Session, layer: str) -> None:
    """One test layer, selected by the directory markers set in tests/conftest.py."""
    _install(session)
    session.run("pytest", "-m", layer, *session.posargs)


@nox.session(python=PYTHON_VERSIONS[-1])
def postgres(session: nox.Session) -> None:
    """Suite against PostgreSQL; needs DATABASE_URL pointing at a scratch database."""
    _install(session, postgres=True)
    session.run("pytest", "--env", "production", *session.posargs)
