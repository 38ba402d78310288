"""VaultDrops command line.

Local tallying works offline; publish and community commands talk to the
configured remote store.

Example:
    vaultdrops tally splaszone Jelly
    vaultdrops tally splaszone 0 --delta -1
    vaultdrops publish splaszone
    vaultdrops community splaszone
    vaultdrops classmods play Vex
    vaultdrops classmods tally Legendary Amon
"""

import asyncio
import sys
from typing import Annotated, NoReturn

import typer

from vaultdrops.common.catalog import find_boss, load_catalog
from vaultdrops.common.config import ConfigError, Settings
from vaultdrops.common.display import (
    create_boss_aggregate_table,
    create_local_tally_table,
    create_matrix_aggregate_table,
    create_matrix_table,
    failed_badge,
    get_console,
    stale_badge,
    success_badge,
)
from vaultdrops.common.logging import configure_log_path, generate_id, set_run_id
from vaultdrops.common.models import (
    CHARACTERS,
    CLASSMOD_TRACKER_ID,
    RARITIES,
    Boss,
    is_index_key,
)
from vaultdrops.common.observability import init_logfire
from vaultdrops.community.aggregator import CommunityAggregator
from vaultdrops.community.publish import PublishService
from vaultdrops.community.remote import RemoteStore, create_remote_store
from vaultdrops.community.results import AggregateResult, PublishResult
from vaultdrops.tracker.client_id import get_client_id
from vaultdrops.tracker.local_store import (
    BossTallyStore,
    ClassModTallyStore,
    JsonFileKeyValueStore,
)

app = typer.Typer(help="Track boss loot drops and compare with the community.")
classmods_app = typer.Typer(help="Class-mod tracker (rarity x character, played -> dropped).")
app.add_typer(classmods_app, name="classmods")


def _settings() -> Settings:
    settings = Settings()
    configure_log_path(settings.data_dir / "logs" / "vaultdrops.jsonl")
    set_run_id(generate_id())
    init_logfire(settings)
    return settings


def _fail(message: str) -> NoReturn:
    get_console().print(failed_badge(), f"[error]{message}[/error]")
    sys.exit(1)


def _resolve_index(value: str, labels: list[str], what: str) -> int:
    """Accept a 0-based index or a case-insensitive label."""
    if is_index_key(value) and int(value) < len(labels):
        return int(value)
    lowered = value.strip().lower()
    for i, label in enumerate(labels):
        if label.lower() == lowered:
            return i
    _fail(f"Unknown {what} {value!r}. Choose one of: {', '.join(labels)}")


def _load_boss(settings: Settings, slug: str) -> Boss:
    try:
        bosses = load_catalog(settings.catalog_path)
    except ConfigError as e:
        _fail(str(e))
    boss = find_boss(bosses, slug)
    if boss is None:
        _fail(f"No boss with slug {slug!r}")
    return boss


def _boss_store(settings: Settings, boss: Boss) -> BossTallyStore:
    kv = JsonFileKeyValueStore(settings.local_storage_path)
    return BossTallyStore(kv, boss.slug, len(boss.columns))


def _remote(settings: Settings) -> RemoteStore:
    try:
        return create_remote_store(settings)
    except ConfigError as e:
        _fail(str(e))


def _report_publish(result: PublishResult) -> None:
    console = get_console()
    if result.error is not None:
        _fail(str(result.error))
    record = result.record
    console.print(
        success_badge(),
        f"[info]Published {record.total_trials} runs for {record.tracker_id}[/info]",
    )


def _print_aggregate(result: AggregateResult, render) -> None:
    console = get_console()
    if result.error is not None:
        console.print(failed_badge(), f"[error]{result.error}[/error]")
        if result.aggregate is None:
            sys.exit(1)
        console.print(stale_badge(), "[warning]Showing last known aggregate[/warning]")
    console.print(render(result.aggregate))


@app.command("bosses")
def list_bosses() -> None:
    """List bosses in the catalog."""
    settings = _settings()
    try:
        bosses = load_catalog(settings.catalog_path)
    except ConfigError as e:
        _fail(str(e))
    console = get_console()
    for boss in bosses:
        remote = boss.tracker_id or "[muted]no tracker id[/muted]"
        console.print(f"[bold]{boss.slug}[/bold]  {boss.name}  ({', '.join(boss.drops)})  {remote}")


@app.command()
def tally(
    slug: Annotated[str, typer.Argument(help="Boss slug")],
    column: Annotated[str, typer.Argument(help="Outcome index or name ('No drop' is 0)")],
    delta: Annotated[int, typer.Option("--delta", "-d", help="Amount to add")] = 1,
) -> None:
    """Record one run outcome for a boss."""
    settings = _settings()
    boss = _load_boss(settings, slug)
    store = _boss_store(settings, boss)
    index = _resolve_index(column, boss.columns, "outcome")
    new_value = store.increment(index, delta)
    get_console().print(
        f"[info]{boss.columns[index]}[/info]: [bold accent]{new_value}[/bold accent] "
        f"(total runs {store.total_trials})"
    )


@app.command()
def show(slug: Annotated[str, typer.Argument(help="Boss slug")]) -> None:
    """Show local counters for a boss."""
    settings = _settings()
    boss = _load_boss(settings, slug)
    store = _boss_store(settings, boss)
    get_console().print(create_local_tally_table(boss.name, boss.columns, store.counts))


@app.command()
def reset(
    slug: Annotated[str, typer.Argument(help="Boss slug")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Reset local counters for a boss."""
    settings = _settings()
    boss = _load_boss(settings, slug)
    if not yes and not typer.confirm(f"Reset all counters for {boss.name}?"):
        raise typer.Abort()
    _boss_store(settings, boss).reset()
    get_console().print(success_badge(), f"[info]Counters reset for {boss.name}[/info]")


@app.command()
def publish(slug: Annotated[str, typer.Argument(help="Boss slug")]) -> None:
    """Publish local counters as this install's community submission."""
    settings = _settings()
    boss = _load_boss(settings, slug)
    store = _boss_store(settings, boss)
    client_id = get_client_id(JsonFileKeyValueStore(settings.local_storage_path))
    service = PublishService(_remote(settings), table=settings.remote.table)
    _report_publish(asyncio.run(service.publish_boss(boss, store, client_id)))


@app.command()
def community(slug: Annotated[str, typer.Argument(help="Boss slug")]) -> None:
    """Show community drop rates for a boss."""
    settings = _settings()
    boss = _load_boss(settings, slug)
    if not boss.tracker_id:
        _fail(f"MissingTrackerId: {boss.name} has no tracker id")
    aggregator = CommunityAggregator(
        _remote(settings), table=settings.remote.table, z=settings.confidence_z
    )
    result = asyncio.run(aggregator.aggregate_boss(boss.tracker_id, boss.columns))
    _print_aggregate(result, create_boss_aggregate_table)


def _classmod_store(settings: Settings) -> ClassModTallyStore:
    return ClassModTallyStore(JsonFileKeyValueStore(settings.local_storage_path))


@classmods_app.command("tally")
def classmods_tally(
    rarity: Annotated[str, typer.Argument(help="Rarity name or index")],
    character: Annotated[str, typer.Argument(help="Character the class mod is for")],
    delta: Annotated[int, typer.Option("--delta", "-d", help="Amount to add")] = 1,
) -> None:
    """Record a class-mod drop."""
    settings = _settings()
    store = _classmod_store(settings)
    r = _resolve_index(rarity, RARITIES, "rarity")
    c = _resolve_index(character, CHARACTERS, "character")
    new_value = store.increment(r, c, delta)
    played = store.active_column
    suffix = f" while playing {CHARACTERS[played]}" if played is not None else ""
    get_console().print(
        f"[info]{RARITIES[r]} {CHARACTERS[c]}[/info]: "
        f"[bold accent]{new_value}[/bold accent]{suffix}"
    )


@classmods_app.command("play")
def classmods_play(
    character: Annotated[str, typer.Argument(help="Character being played, or 'none'")],
) -> None:
    """Set the character being played."""
    settings = _settings()
    store = _classmod_store(settings)
    if character.lower() == "none":
        store.set_active_column(None)
        get_console().print("[info]No active character[/info]")
        return
    index = _resolve_index(character, CHARACTERS, "character")
    store.set_active_column(index)
    get_console().print(f"[info]Now playing[/info] [bold accent]{CHARACTERS[index]}[/bold accent]")


@classmods_app.command("show")
def classmods_show() -> None:
    """Show local class-mod counters."""
    settings = _settings()
    store = _classmod_store(settings)
    console = get_console()
    grid = [[store.count(r, c) for c in range(len(CHARACTERS))] for r in range(len(RARITIES))]
    console.print(create_matrix_table("Class mods by rarity", RARITIES, grid, row_header="Rarity"))
    shares = "  ".join(
        f"{name} {store.loot_share(i):.1f}%" for i, name in enumerate(CHARACTERS)
    )
    console.print(f"[muted]Loot share per character:[/muted] {shares}")
    console.print(create_matrix_table("Played -> dropped", CHARACTERS, store.matrix()))


@classmods_app.command("publish")
def classmods_publish() -> None:
    """Publish the played -> dropped matrix."""
    settings = _settings()
    store = _classmod_store(settings)
    client_id = get_client_id(JsonFileKeyValueStore(settings.local_storage_path))
    service = PublishService(_remote(settings), table=settings.remote.table)
    _report_publish(asyncio.run(service.publish_class_mods(store, client_id)))


@classmods_app.command("community")
def classmods_community() -> None:
    """Show community class-mod rates."""
    settings = _settings()
    aggregator = CommunityAggregator(
        _remote(settings), table=settings.remote.table, z=settings.confidence_z
    )
    result = asyncio.run(aggregator.aggregate_matrix(CLASSMOD_TRACKER_ID))
    _print_aggregate(result, create_matrix_aggregate_table)


if __name__ == "__main__":
    app()
