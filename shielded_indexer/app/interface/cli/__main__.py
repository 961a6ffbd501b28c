import asyncio
import inspect
import logging
from typing import List, Optional

import typer
from dotenv import load_dotenv
from InquirerPy import inquirer

from shielded_indexer.app.config import settings
from shielded_indexer.app.infrastructure.factories.stores_factory import supported_backends
from shielded_indexer.app.interface.tasks import TASKS
from shielded_indexer.app.interface.tasks.ingest_shielded_pool_task import (
    ingest_shielded_pool_task,
)
from shielded_indexer.app.interface.tasks.resolve_topic_task import resolve_topic_task


load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

app = typer.Typer()
indexer_app = typer.Typer(help="cli for indexing shielded pool events.")
app.add_typer(indexer_app, name="indexer")


def _echo_stats(stats: object) -> None:
    typer.echo(f"Done: {stats}")


@indexer_app.command("run")
def run() -> None:
    task_name = inquirer.select(
        message="Select task:",
        choices=list(TASKS.keys()),
        pointer="❯",
        instruction="Use ↑/↓ to move, Enter to select",
    ).execute()

    task = TASKS[task_name]
    params = inspect.signature(task).parameters
    kwargs: dict[str, object] = {}

    if "chain_id" in params:
        kwargs["chain_id"] = int(
            inquirer.text(
                message="Chain ID (e.g. 11155111 for Sepolia):",
                default=str(settings.chain_id),
            ).execute()
        )
    if "from_block" in params:
        kwargs["from_block"] = inquirer.text(
            message="From block (inclusive):",
            default="earliest",
        ).execute()
    if "to_block" in params:
        kwargs["to_block"] = inquirer.text(
            message="To block (inclusive):",
            default="latest",
        ).execute()
    if "topic_hash" in params:
        kwargs["topic_hash"] = inquirer.text(message="Topic hash (0x-prefixed):").execute()

    if "backend" in params:
        kwargs["backend"] = inquirer.select(
            message="Store backend:",
            choices=supported_backends(),
            default="sqlalchemy",
        ).execute()

    _echo_stats(asyncio.run(task(**kwargs)))  # type: ignore


@indexer_app.command("ingest")
def ingest(
    chain_id: int = typer.Option(settings.chain_id, help="Chain ID."),
    from_block: str = typer.Option("earliest", help="Block number or 'earliest'."),
    to_block: str = typer.Option("latest", help="Block number or 'latest'."),
    backend: str = typer.Option("sqlalchemy", help="Store backend (sqlalchemy | memory)."),
) -> None:
    stats = asyncio.run(
        ingest_shielded_pool_task(
            chain_id=chain_id,
            from_block=from_block,
            to_block=to_block,
            backend=backend,
        )
    )
    _echo_stats(stats)


@indexer_app.command("resolve-topic")
def resolve_topic(
    topic_hash: str = typer.Argument(..., help="0x-prefixed topic0 hash."),
    candidate: Optional[List[str]] = typer.Option(
        None,
        "--candidate",
        "-c",
        help="Candidate signature to try (repeatable). Defaults to the configured list.",
    ),
) -> None:
    signature = asyncio.run(resolve_topic_task(topic_hash=topic_hash, candidates=candidate or ()))
    if signature is None:
        typer.echo(f"No match for {topic_hash}")
        raise typer.Exit(code=1)
    typer.echo(f"{signature.canonical} (version={signature.version})")


if __name__ == "__main__":
    typer.echo("\n  --- Shielded Pool Indexer CLI ---\n")
    app()
