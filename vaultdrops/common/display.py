from rich.console import Console
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from vaultdrops.analyst.stats import ConfidenceEstimate, percent
from vaultdrops.common.models import BossAggregate, MatrixAggregate

AMBER = "#FBBF24"
SLATE = "#94A3B8"


_vault_theme = Theme(
    {
        "primary": AMBER,
        "accent": AMBER,
        "muted": SLATE,
        "bold": "bold",
        "success": "green bold",
        "error": "red bold",
        "warning": "yellow bold",
        "info": "blue bold",
    }
)


_console: Console | None = None


def get_theme() -> Theme:
    return _vault_theme


def get_console(force_terminal: bool | None = None) -> Console:
    global _console

    if _console is None or force_terminal is not None:
        _console = Console(
            theme=_vault_theme,
            force_terminal=force_terminal,
            legacy_windows=False,
        )

    return _console


def success_badge() -> Text:
    return Text("[SUCCESS]", style="success")


def failed_badge() -> Text:
    return Text("[FAILED]", style="error")


def stale_badge() -> Text:
    return Text("[STALE]", style="warning")


def format_estimate(estimate: ConfidenceEstimate) -> str:
    """Render as e.g. "20.0% ± 25.2"."""
    point, margin = estimate.as_percent()
    return f"{point:.1f}% ± {margin:.1f}"


def _new_table(title: str) -> Table:
    return Table(
        title=title,
        title_style=f"bold {AMBER}",
        border_style=SLATE,
        header_style=f"bold {AMBER}",
        row_styles=["", "dim"],
        padding=(0, 1),
    )


def create_local_tally_table(title: str, columns: list[str], counts: list[int]) -> Table:
    """Local counters with their share of total runs."""
    table = _new_table(title)
    table.add_column("#", style="muted", justify="right")
    table.add_column("Outcome", style="bold")
    table.add_column("Count", justify="right")
    table.add_column("Share", justify="right")

    total = sum(counts)
    for index, (label, count) in enumerate(zip(columns, counts, strict=True)):
        table.add_row(str(index), label, str(count), f"{percent(count, total):.1f}%")

    dedicated = sum(counts[1:])
    table.add_section()
    table.add_row("", "Any dedicated drop", str(dedicated), f"{percent(dedicated, total):.1f}%")
    table.add_row("", "Total runs", str(total), "")
    return table


def create_boss_aggregate_table(aggregate: BossAggregate) -> Table:
    table = _new_table(f"Community drop rates - {aggregate.tracker_id}")
    table.add_column("Outcome", style="bold")
    table.add_column("Drops", justify="right")
    table.add_column("Rate (95% CI)", justify="right")

    for cell in aggregate.cells:
        table.add_row(cell.label, str(cell.count), format_estimate(cell.estimate))

    table.add_section()
    table.add_row(
        aggregate.dedicated.label,
        str(aggregate.dedicated.count),
        format_estimate(aggregate.dedicated.estimate),
        style="accent",
    )
    table.caption = (
        f"{aggregate.total_trials} runs from {aggregate.submitters} submitter(s)"
        + (f", {aggregate.skipped_records} skipped" if aggregate.skipped_records else "")
    )
    return table


def create_matrix_table(
    title: str, labels: list[str], matrix: list[list[int]], row_header: str = "Played"
) -> Table:
    """Raw played -> dropped counts."""
    table = _new_table(title)
    table.add_column(row_header, style="bold")
    for label in labels:
        table.add_column(label, justify="right")
    table.add_column("Total", justify="right", style="muted")
    for label, row in zip(labels, matrix, strict=True):
        table.add_row(label, *(str(v) for v in row), str(sum(row)))
    return table


def create_matrix_aggregate_table(aggregate: MatrixAggregate) -> Table:
    table = _new_table("Community class-mod rates (conditional on character played)")
    table.add_column("Played", style="bold")
    for label in aggregate.labels:
        table.add_column(label, justify="right")
    table.add_column("Runs", justify="right", style="muted")

    for row in aggregate.rows:
        table.add_row(
            row.label, *(format_estimate(c.estimate) for c in row.cells), str(row.trials)
        )
    table.caption = f"{aggregate.total_trials} drops from {aggregate.submitters} submitter(s)"
    return table
