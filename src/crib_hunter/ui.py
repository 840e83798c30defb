from typing import Optional

from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from crib_hunter.models.results import SearchState
from crib_hunter.progress import SearchSnapshot, SingleSlotQueue


STATE_STYLES = {
    SearchState.COLLECTING_SAMPLES: "dim",
    SearchState.SEARCHING: "bold yellow",
    SearchState.ANALYZING: "bold cyan",
    SearchState.CONFIRMED: "bold spring_green2",
    SearchState.LOW_CONFIDENCE: "green",
    SearchState.PARTIAL_KEYSTREAM: "turquoise2",
    SearchState.UNRESOLVED: "bright_red",
}

MAX_MATCH_ROWS = 8


def styled(text: str, style: str) -> str:
    return f"[{style}]{text}[/{style}]"


def render(state: Optional[SearchSnapshot]):
    """Render the solver state snapshot."""
    if state is None:
        return Panel("Waiting for first update…", title="crib-hunter", border_style="dim")

    ui_table = Table(title=f"{len(state.matches)} match(es)  |  {state.samples} sample(s)  |  v{state.state_version}")
    ui_table.add_column("Field", justify="right")
    ui_table.add_column("Value")

    ui_table.add_row("State", styled(str(state.state), STATE_STYLES.get(state.state, "white")))
    ui_table.add_row(
        "Work items",
        f"{state.work_items_done} / {state.work_items_total}  ({state.completion_percent:.1f}%)",
    )
    budget = f" / {state.max_combinations:,}" if state.max_combinations else ""
    ui_table.add_row("Combinations", f"{state.combinations_tried:,}{budget}")
    if state.current_item:
        ui_table.add_row("Last item", state.current_item)

    for match in state.matches[:MAX_MATCH_ROWS]:
        ui_table.add_row("Match", styled(match, "spring_green2"))
    if len(state.matches) > MAX_MATCH_ROWS:
        ui_table.add_row("", f"… {len(state.matches) - MAX_MATCH_ROWS} more")

    if state.result:
        ui_table.add_row("Result", state.result)

    return ui_table


def ui_loop(state_queue: SingleSlotQueue[SearchSnapshot]) -> None:
    with Live(render(None), refresh_per_second=30, screen=False) as live:
        while True:
            state = state_queue.get()
            if state is None:
                break
            live.update(render(state))
