"""CLI entry point for traffic-test-agent."""

import logging
from pathlib import Path

import click
import yaml

from traffic_test_agent.auth.classifier import classify
from traffic_test_agent.backends import BACKENDS, create_backend
from traffic_test_agent.config import load_settings
from traffic_test_agent.errors import AgentError
from traffic_test_agent.fingerprint import dedupe, filter_excluded
from traffic_test_agent.generator.dialects import Dialect
from traffic_test_agent.generator.suite import SuiteGenerator
from traffic_test_agent.parser.base import Session
from traffic_test_agent.parser.detect import load_session
from traffic_test_agent.storage import EnvCredentialStore

FORMATS = ["auto", "har", "session"]


def _load(session_path: Path, fmt: str) -> Session:
    try:
        return load_session(session_path, fmt)
    except AgentError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """Traffic Test Agent — generate API test suites from recorded HTTP traffic."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.argument("session_path", type=click.Path(exists=True, path_type=Path))
@click.option("--exclude", "excluded", multiple=True, help="Endpoint signature to skip, e.g. 'GET:/health'.")
@click.option("--format", "fmt", default="auto", type=click.Choice(FORMATS), help="Session file format.")
def endpoints(session_path: Path, excluded: tuple[str, ...], fmt: str):
    """List the unique endpoints of a recorded session."""
    session = _load(session_path, fmt)
    for endpoint in dedupe(filter_excluded(session.exchanges, excluded)):
        click.echo(endpoint.key.signature)


@main.command()
@click.argument("session_path", type=click.Path(exists=True, path_type=Path))
@click.option("--format", "fmt", default="auto", type=click.Choice(FORMATS), help="Session file format.")
def auth(session_path: Path, fmt: str):
    """Show how the recorded API authenticates."""
    session = _load(session_path, fmt)
    verdict = classify(session.exchanges)
    click.echo(yaml.safe_dump(verdict.summary(), sort_keys=False), nl=False)


@main.command()
@click.argument("session_path", type=click.Path(exists=True, path_type=Path))
@click.option("-o", "--output", required=True, type=click.Path(path_type=Path), help="Output file for the test suite.")
@click.option("--dialect", default=None, type=click.Choice([d.value for d in Dialect]), help="Output test framework.")
@click.option("--backend", "backend_id", default=None, type=click.Choice(sorted(BACKENDS)), help="Generation backend.")
@click.option("--model", default=None, help="Model to use on the backend.")
@click.option("--exclude", "excluded", multiple=True, help="Endpoint signature to skip, e.g. 'GET:/health'.")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True, path_type=Path), help="YAML settings file.")
@click.option("--format", "fmt", default="auto", type=click.Choice(FORMATS), help="Session file format.")
def generate(
    session_path: Path,
    output: Path,
    dialect: str | None,
    backend_id: str | None,
    model: str | None,
    excluded: tuple[str, ...],
    config_path: Path | None,
    fmt: str,
):
    """Generate a merged test suite from a recorded session."""
    settings = load_settings(config_path)
    dialect = dialect or settings.dialect
    backend_id = backend_id or settings.backend

    click.echo(f"Loading {session_path} (format: {fmt})...")
    session = _load(session_path, fmt)
    click.echo(f"Found {len(session.exchanges)} exchanges.")

    try:
        backend = create_backend(
            backend_id,
            api_key=EnvCredentialStore().get(backend_id),
            model=model or settings.model,
            timeout=settings.request_timeout,
        )
        click.echo(f"Generating {dialect} tests with {backend_id}...")
        report = SuiteGenerator(backend, settings=settings).generate(session, dialect, excluded)
    except AgentError as e:
        raise click.ClickException(str(e)) from e

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(report.output.code, encoding="utf-8")

    merged = report.output
    click.echo(f"  Endpoints: {merged.endpoint_count}")
    click.echo(f"  Auth pattern: {report.verdict.pattern.value}")
    click.echo(f"  Quality score: {merged.quality_score:.1f}/10")
    click.echo(f"  Estimated tokens: {merged.estimated_tokens} (~${merged.estimated_cost:.4f})")
    for warning in merged.warnings:
        click.echo(f"  Warning: {warning}")
    click.echo(f"Test suite saved to {output}")
