"""Click CLI entry point.

Usage:
    news-refinery crawl -l zh -l en --budget 5
    news-refinery crawl -l en --source textile-world-en --no-refine
    news-refinery sources --language zh
    news-refinery schedule add --name daily --cron "0 9 * * *" -l zh -l en
    news-refinery schedule list
    news-refinery scheduler            # poll forever
    news-refinery scheduler --once     # run due schedules and exit
    news-refinery batch submit refine ORIGIN_ID ...
    news-refinery init-db
"""

from __future__ import annotations

import asyncio

import click

from news_refinery.config import settings
from news_refinery.errors import RefineryError
from news_refinery.models import RunRequest, RunResult, ScheduleConfig
from news_refinery.utils.logging import BOLD, DIM, GREEN, RED, RESET, get_logger

log = get_logger()


def _run(coro):
    try:
        return asyncio.run(coro)
    except RefineryError as e:
        click.echo(f"{RED}Error:{RESET} {e}")
        raise SystemExit(1)


async def _with_services(fn, recover_batches: bool = False):
    from news_refinery.services import build_services, shutdown_services

    services = await build_services(recover_batches)
    try:
        return await fn(services)
    finally:
        await shutdown_services()


@click.group()
def cli() -> None:
    """Multi-language news crawl and AI refinement pipeline."""
    pass


# ---------------------------------------------------------------------------
# crawl
# ---------------------------------------------------------------------------

@cli.command()
@click.option("-l", "--language", "languages", multiple=True, required=True, help="Language to crawl (repeatable)")
@click.option("--source", "source_ids", multiple=True, help="Restrict to these source ids (repeatable)")
@click.option("--budget", default=settings.default_budget_per_language, help="Max admitted articles per language")
@click.option("--max-per-source", default=settings.default_max_articles_per_source, help="Max admitted articles per source")
@click.option("--quality-threshold", default=0, type=click.IntRange(0, 100), help="Minimum content score (0-100)")
@click.option("--no-refine", is_flag=True, help="Skip the AI refinement stage")
@click.option("-t", "--target-language", "target_languages", multiple=True, help="Refinement target language (repeatable)")
def crawl(
    languages: tuple[str, ...],
    source_ids: tuple[str, ...],
    budget: int,
    max_per_source: int,
    quality_threshold: int,
    no_refine: bool,
    target_languages: tuple[str, ...],
) -> None:
    """Crawl sources for one or more languages and refine the new articles."""
    request = RunRequest(
        languages=list(languages),
        source_ids=list(source_ids),
        budget_per_language=budget,
        max_articles_per_source=max_per_source,
        quality_threshold=quality_threshold,
        refine=not no_refine,
        target_languages=list(target_languages),
    )

    async def _crawl(services) -> RunResult:
        result = await services.orchestrator.run_crawl(request)
        await services.orchestrator.persist(result)
        return result

    _print_result(_run(_with_services(_crawl)))


def _print_result(result: RunResult) -> None:
    click.echo(f"\n{BOLD}Run {result.run_id}{RESET}\n")
    click.echo(f"  {'Lang':<6} {'Status':<10} {'Found':>6} {'Processed':>10} {'Refined':>8}  Error")
    click.echo(f"  {'─' * 6} {'─' * 10} {'─' * 6} {'─' * 10} {'─' * 8}  {'─' * 20}")
    for language, outcome in result.languages.items():
        p = outcome.progress
        color = GREEN if p.status == "completed" else RED
        click.echo(
            f"  {language:<6} {color}{p.status:<10}{RESET} {p.articles_found:>6} "
            f"{p.articles_processed:>10} {p.articles_refined:>8}  {DIM}{p.error or ''}{RESET}"
        )
    click.echo("")


# ---------------------------------------------------------------------------
# sources
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--language", default=None, help="Only sources for this language, in visit order")
def sources(language: str | None) -> None:
    """List configured sources."""
    from news_refinery.registry import build_registry

    registry = build_registry(settings.sources_file)
    rows = registry.active_sources_for(language) if language else registry.all()
    click.echo(f"\n  {'Id':<24} {'Lang':>4} {'Prio':>4} {'Quality':>7}  Name")
    for s in rows:
        flag = "" if s.active else f" {DIM}(inactive){RESET}"
        click.echo(f"  {s.id:<24} {s.language:>4} {s.priority:>4} {s.quality_score:>7.2f}  {s.name}{flag}")
    click.echo("")


# ---------------------------------------------------------------------------
# schedules
# ---------------------------------------------------------------------------

@cli.group()
def schedule() -> None:
    """Manage recurring crawl schedules."""
    pass


@schedule.command("list")
def schedule_list() -> None:
    async def _list(services):
        return await services.schedules.list()

    for s in _run(_with_services(_list)):
        state = f"{GREEN}on{RESET}" if s.active else f"{DIM}off{RESET}"
        next_run = s.next_run_at.strftime("%Y-%m-%d %H:%M") if s.next_run_at else "—"
        click.echo(
            f"  {s.id:<20} {state:<3} {s.cron_expression:<15} {','.join(s.target_languages):<12} "
            f"next={next_run}  runs={s.successful_runs}/{s.total_runs}  {s.name}"
        )


@schedule.command("add")
@click.option("--name", required=True)
@click.option("--cron", "cron_expression", required=True, help='5-field cron, e.g. "0 9 * * *"')
@click.option("-l", "--language", "languages", multiple=True, required=True)
@click.option("--source", "source_ids", multiple=True)
@click.option("--quality-threshold", default=0, type=click.IntRange(0, 100))
@click.option("--max-per-source", default=settings.default_max_articles_per_source)
@click.option("--budget", default=settings.default_budget_per_language)
@click.option("--description", default="")
@click.option("--ai-model", default="")
def schedule_add(
    name: str,
    cron_expression: str,
    languages: tuple[str, ...],
    source_ids: tuple[str, ...],
    quality_threshold: int,
    max_per_source: int,
    budget: int,
    description: str,
    ai_model: str,
) -> None:
    config = ScheduleConfig(
        name=name,
        description=description,
        cron_expression=cron_expression,
        ai_model=ai_model,
        source_ids=list(source_ids),
        target_languages=list(languages),
        quality_threshold=quality_threshold,
        max_articles_per_source=max_per_source,
        budget_per_language=budget,
    )

    async def _add(services):
        return await services.schedules.create(config)

    created = _run(_with_services(_add))
    click.echo(f"{GREEN}✓{RESET} {created.id} next run {created.next_run_at:%Y-%m-%d %H:%M} UTC")


@schedule.command("remove")
@click.argument("schedule_id")
def schedule_remove(schedule_id: str) -> None:
    async def _remove(services):
        await services.schedules.delete(schedule_id)

    _run(_with_services(_remove))
    click.echo(f"{GREEN}✓{RESET} removed {schedule_id}")


@schedule.command("enable")
@click.argument("schedule_id")
def schedule_enable(schedule_id: str) -> None:
    _set_active(schedule_id, True)


@schedule.command("disable")
@click.argument("schedule_id")
def schedule_disable(schedule_id: str) -> None:
    _set_active(schedule_id, False)


def _set_active(schedule_id: str, active: bool) -> None:
    async def _toggle(services):
        return await services.schedules.set_active(schedule_id, active)

    updated = _run(_with_services(_toggle))
    click.echo(f"{GREEN}✓{RESET} {updated.id} {'enabled' if updated.active else 'disabled'}")


@cli.command()
@click.option("--once", is_flag=True, help="Run due schedules once and exit")
@click.option("--interval", default=settings.scheduler_poll_interval_s, help="Seconds between due checks")
def scheduler(once: bool, interval: float) -> None:
    """Run due schedules (forever, or once)."""

    async def _loop(services):
        if once:
            outcomes = await services.schedules.run_due_once()
            click.echo(f"{len(outcomes)} schedule(s) run, {sum(outcomes.values())} succeeded")
        else:
            await services.schedules.run_forever(poll_interval_s=interval)

    _run(_with_services(_loop, recover_batches=not once))


# ---------------------------------------------------------------------------
# batch jobs
# ---------------------------------------------------------------------------

@cli.group()
def batch() -> None:
    """Bulk refine/publish jobs over stored articles."""
    pass


@batch.command("submit")
@click.argument("operation", type=click.Choice(["refine", "publish"]))
@click.argument("origin_ids", nargs=-1, required=True)
def batch_submit(operation: str, origin_ids: tuple[str, ...]) -> None:
    async def _submit(services):
        job = await services.batches.submit(list(origin_ids), operation)
        return await services.batches.wait(job.id)

    job = _run(_with_services(_submit))
    click.echo(
        f"{GREEN}▸{RESET} {job.id} {job.status}: {job.success_count} ok, "
        f"{job.failed_count} failed ({job.total_items} items)"
    )


@batch.command("list")
@click.option("--status", default=None, type=click.Choice(["pending", "running", "completed", "failed", "cancelled"]))
@click.option("--limit", default=20)
def batch_list(status: str | None, limit: int) -> None:
    async def _list(services):
        return await services.batches.list(status=status, limit=limit)

    for job in _run(_with_services(_list)):
        click.echo(
            f"  {job.id:<20} {job.operation:<8} {job.status:<10} {job.progress:>3}%  "
            f"{job.success_count}/{job.total_items} ok  {job.started_at:%Y-%m-%d %H:%M}"
        )


@cli.command("init-db")
def init_db() -> None:
    """Create the PostgreSQL tables for schedules, batch jobs and articles."""
    from news_refinery.db import close_pool, get_pool, init_schema

    if not settings.database_url:
        click.echo("Error: DATABASE_URL not set in .env")
        raise SystemExit(1)

    log.info(f"{BOLD}Applying schema to PostgreSQL{RESET}")

    async def _init():
        try:
            await init_schema(await get_pool())
        finally:
            await close_pool()

    _run(_init())
    click.echo(f"{GREEN}✓{RESET} schema applied")


if __name__ == "__main__":
    cli()
