"""
Rich console rendering for the rebellion tracker.

Pure renderers: each takes a snapshot or a result object and returns a rich
renderable. Printing is left to the caller's Console.
"""

from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..state.schema import CheckType, OrganizationState
from ..systems.allies import ALLIES, ally_label, monthly_action_status
from ..systems.bonuses import (
    RollBonuses,
    get_actions_remaining,
    get_effective_danger,
    get_event_chance,
    get_min_treasury,
    is_treasury_low,
)
from ..systems.event_phase import EventResolution, EventRoll
from ..systems.officers import OFFICER_ROLES, ActorDirectory, officer_name
from ..systems.phases import WeekReport
from ..systems.teams import count_disabled_teams, count_missing_teams, get_definition, is_operational

PHASE_COLORS = {
    "activity": "cyan",
    "event": "yellow",
    "maintenance": "magenta",
}


def _notoriety_color(value: int) -> str:
    return "green" if value < 20 else "yellow" if value < 50 else "red"


def render_status_panel(state: OrganizationState) -> Panel:
    """
    Status summary:
    - week, phase and rank
    - resources
    - notoriety, danger and event chance
    """
    phase_color = PHASE_COLORS.get(state.phase.value, "white")
    treasury_color = "red" if is_treasury_low(state) else "green"
    notoriety_color = _notoriety_color(state.notoriety)

    parts = [
        f"[bold cyan]Week {state.week}[/bold cyan]",
        f"Phase: [{phase_color}]{state.phase.value.upper()}[/{phase_color}]",
        f"Rank: {state.rank}/{state.max_rank}",
        f"Focus: {state.focus.value}",
    ]
    resources = [
        f"Supporters: {state.supporters}",
        f"Population: {state.population}",
        f"Treasury: [{treasury_color}]{state.treasury:g}[/{treasury_color}]"
        f" [dim](min {get_min_treasury(state)})[/dim]",
    ]
    risk = [
        f"Notoriety: [{notoriety_color}]{state.notoriety}[/{notoriety_color}]",
        f"Danger: {get_effective_danger(state)}",
        f"Event chance: {get_event_chance(state)}%",
        f"Actions left: {get_actions_remaining(state)}",
    ]
    if state.teams:
        risk.append(
            f"Teams: {len(state.teams)}"
            f" [dim]({count_disabled_teams(state)} disabled, {count_missing_teams(state)} missing)[/dim]"
        )

    body = Text.from_markup("\n".join(" │ ".join(line) for line in (parts, resources, risk)))
    return Panel(
        body,
        title="[bold]REBELLION[/bold]",
        title_align="left",
        border_style="blue",
        padding=(0, 1),
    )


def render_teams_table(state: OrganizationState) -> Table:
    table = Table(title="Teams", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Team")
    table.add_column("Status")
    table.add_column("Action")

    for i, team in enumerate(state.teams):
        definition = get_definition(team.type)
        if team.missing:
            status = "[red]missing[/red]"
        elif team.disabled:
            status = "[yellow]disabled[/yellow]"
        elif team.blocked_by_rivalry:
            status = "[yellow]rivalry[/yellow]"
        elif is_operational(team):
            status = "[green]ready[/green]" if not team.has_acted else "[dim]acted[/dim]"
        else:
            status = "[dim]idle[/dim]"
        table.add_row(str(i), definition.label, status, team.current_action or "-")
    return table


def render_events_table(state: OrganizationState) -> Table:
    table = Table(title="Active events", show_header=True, header_style="bold")
    table.add_column("Event")
    table.add_column("Since", justify="right")
    table.add_column("Lasts", justify="right")
    table.add_column("Mitigated")

    for event in state.active_event_list():
        if event.is_persistent:
            lasts = "∞"
        else:
            lasts = str(event.duration) if event.duration is not None else "1"
        table.add_row(
            event.name,
            str(event.week_started),
            lasts,
            "[green]yes[/green]" if event.mitigated else "",
        )
    return table


def render_officers_table(state: OrganizationState, actors: ActorDirectory | None = None) -> Table:
    table = Table(title="Officers", show_header=True, header_style="bold")
    table.add_column("Role")
    table.add_column("Officer")
    table.add_column("Status")

    for officer in state.officers:
        if officer.captured:
            status = "[red]captured[/red]"
        elif officer.missing:
            status = "[red]missing[/red]"
        elif officer.disabled:
            status = "[yellow]disabled[/yellow]"
        else:
            status = "[green]serving[/green]"
        table.add_row(OFFICER_ROLES[officer.role].label, officer_name(officer, state, actors), status)
    return table


def render_allies_table(state: OrganizationState) -> Table:
    table = Table(title="Allies", show_header=True, header_style="bold")
    table.add_column("Ally")
    table.add_column("Status")
    table.add_column("Monthly")

    for ally in state.allies:
        if ally.captured:
            status = "[red]captured[/red]"
        elif ally.missing:
            status = "[red]missing[/red]"
        elif not ally.enabled:
            status = "[dim]inactive[/dim]"
        else:
            status = "[green]active[/green]"

        monthly = ""
        definition = ALLIES.get(ally.slug)
        if definition is not None and definition.monthly_action:
            info = monthly_action_status(state, ally.slug)
            if info["available"]:
                monthly = "[green]ready[/green]"
            elif info["weeks_until_available"]:
                monthly = f"{info['weeks_until_available']} wk"
        table.add_row(ally_label(ally.slug), status, monthly)
    return table


def render_status(state: OrganizationState, actors: ActorDirectory | None = None) -> Group:
    renderables = [render_status_panel(state)]
    if state.teams:
        renderables.append(render_teams_table(state))
    if state.officers:
        renderables.append(render_officers_table(state, actors))
    if state.allies:
        renderables.append(render_allies_table(state))
    if state.active_event_list():
        renderables.append(render_events_table(state))
    return Group(*renderables)


def render_bonuses(bonuses: RollBonuses, context: str | None = None) -> Table:
    """Per-check totals with each contributor on its own line."""
    title = "Roll bonuses" + (f" ({context})" if context else "")
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Check")
    table.add_column("Total", justify="right")
    table.add_column("Breakdown")

    for check in CheckType:
        bonus = bonuses[check]
        breakdown = ", ".join(f"{p.label} {p.value:+d}" for p in bonus.parts) or "[dim]none[/dim]"
        table.add_row(check.value, f"{bonus.total:+d}", breakdown)

    table.caption = f"Actions per week: {bonuses.max_actions}"
    return table


def _resolution_lines(resolution: EventResolution, indent: str = "") -> list[str]:
    lines = [f"{indent}[bold]{resolution.name}[/bold] (d100 {resolution.total})"]
    lines.extend(f"{indent}  {note}" for note in resolution.notes)
    for extra in resolution.extra:
        lines.extend(_resolution_lines(extra, indent + "  "))
    return lines


def render_event_roll(roll: EventRoll) -> Text:
    if roll.suppressed:
        return Text.from_markup("[green]All quiet: no event this week[/green]")
    if not roll.occurred or roll.resolution is None:
        return Text.from_markup(f"No event (rolled {roll.roll} vs {roll.chance}%)")
    lines = [f"Event! (rolled {roll.roll} vs {roll.chance}%)"]
    lines.extend(_resolution_lines(roll.resolution))
    return Text.from_markup("\n".join(lines))


def render_week_report(report: WeekReport) -> Panel:
    maintenance = report.maintenance
    lines = [render_event_roll(report.event), Text("")]
    for step in maintenance.steps:
        lines.append(Text.from_markup(f"[bold]{step.name}[/bold]"))
        lines.extend(Text(f"  {note}") for note in step.notes)
    if maintenance.rank_after != maintenance.rank_before:
        lines.append(Text.from_markup(
            f"[bold green]Rank {maintenance.rank_before} → {maintenance.rank_after}[/bold green]"
        ))
    return Panel(
        Group(*lines),
        title=f"[bold]Week {maintenance.week} resolved[/bold]",
        title_align="left",
        border_style="magenta",
        padding=(0, 1),
    )
