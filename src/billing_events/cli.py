"""CLI entry point for the billing event engine."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import click


def _read_json(path: str) -> Any:
    try:
        return json.loads(Path(path).read_text())
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"{path} is not valid JSON: {exc.msg}") from exc


@click.group()
def main() -> None:
    """Billing lifecycle event engine."""


@main.command()
@click.option("--config", default=None, help="Config file path")
@click.option(
    "--file", "event_file", required=True, type=click.Path(exists=True),
    help="JSON file holding one envelope or a list of envelopes",
)
def route(config: str | None, event_file: str) -> None:
    """Route subscription event envelopes through the lifecycle handlers."""
    import asyncio

    from .main import run_subscription_events

    payload = _read_json(event_file)
    envelopes = payload if isinstance(payload, list) else [payload]
    results = asyncio.run(run_subscription_events(envelopes, config_path=config))

    for result in results:
        state = result.state.value if result.state else "-"
        click.echo(
            f"{result.event_type}: handled={result.handled} "
            f"state={state} upgraded={result.upgraded}"
        )


@main.command()
@click.option("--config", default=None, help="Config file path")
@click.option(
    "--file", "batch_file", required=True, type=click.Path(exists=True),
    help='JSON file holding a dead-letter batch ({"Records": [...]})',
)
@click.option("--max-retries", default=None, type=int, help="Override dead_letter.max_retries")
def redrive(config: str | None, batch_file: str, max_retries: int | None) -> None:
    """Redrive or quarantine a batch of dead-lettered events."""
    import asyncio

    from .main import run_dead_letter_batch

    overrides: dict[str, Any] = {}
    if max_retries is not None:
        overrides["dead_letter"] = {"max_retries": max_retries}

    response = asyncio.run(
        run_dead_letter_batch(_read_json(batch_file), config_path=config, overrides=overrides)
    )
    click.echo(json.dumps(response, indent=2))


@main.command()
@click.option(
    "--file", "event_file", required=True, type=click.Path(exists=True),
    help="JSON file holding a customer.subscription.updated payload",
)
def classify(event_file: str) -> None:
    """Print the lifecycle state of a subscription update without side effects."""
    from .subscription.classifier import determine_state
    from .subscription.snapshot import parse_provider_event

    event = parse_provider_event(_read_json(event_file))
    previous = getattr(event, "previous", None)
    click.echo(determine_state(event.subscription, previous).value)


if __name__ == "__main__":
    main()
