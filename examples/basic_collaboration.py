"""
Basic Collaboration Example

Runs two collaboration turns in one session against scripted offline models,
then shows the stored session history.

Usage:
    python examples/basic_collaboration.py
"""

import asyncio

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from wallbounce import (
    CollaborationService,
    InMemoryStateStore,
    ScriptedModelInvoker,
    SessionManager,
    WallBounceOrchestrator,
)

console = Console()

PROPOSER = "gpt-5"
CRITIC = "claude-4"


def build_service() -> CollaborationService:
    """Wire a service with scripted responses so the example runs without a gateway."""
    invoker = ScriptedModelInvoker(
        {
            PROPOSER: [
                "Use list.reverse() to reverse in place.",
                "Use reversed(lst) or lst[::-1] to get a new reversed list without mutating it.",
                "Tuples are immutable, so use tup[::-1] to build a reversed copy.",
            ],
            CRITIC: [
                "The answer is wrong for callers that need a copy and incorrect about "
                "mutation; missing the slicing form is a major issue.",
                "Correct and accurate; a solid, good answer.",
            ],
        }
    )
    store = InMemoryStateStore(region="us-east-1")
    return CollaborationService(WallBounceOrchestrator(invoker), SessionManager(store))


async def ask(service: CollaborationService, query: str) -> None:
    result = await service.collaborate(
        {"query": query, "models": [PROPOSER, CRITIC], "sessionId": "example"}
    )

    table = Table(title=query)
    table.add_column("#", style="cyan")
    table.add_column("Phase")
    table.add_column("Model", style="magenta")
    table.add_column("Output")
    for r in result.rounds:
        table.add_row(str(r.iteration), r.phase.value, r.model, r.output[:70])
    console.print(table)

    score = result.critique_score
    console.print(
        Panel(
            f"{result.final_response}\n\n"
            f"Critique score: {score.final_score if score else '-'}  "
            f"Revised: {'yes' if result.revised else 'no'}  "
            f"Quality: {result.metadata.quality}",
            title=f"Final response after {result.wall_bounce_count} pass(es)",
        )
    )


async def main():
    """Main execution function."""
    async with build_service() as service:
        await ask(service, "How do I reverse a list in Python?")
        await ask(service, "And a tuple?")

        record = await service.sessions.get_session("example")
        console.print(
            f"\n[green]✓[/green] Session {record.session_id} at version {record.version} "
            f"with {len(record.exchanges)} exchanges"
        )


if __name__ == "__main__":
    asyncio.run(main())
