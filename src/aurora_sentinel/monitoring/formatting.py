"""
Status Formatting with Rich
============================

Terminal status report for one FusionContext.
"""

from rich.console import Console
from rich.panel import Panel
from rich.style import Style
from rich.table import Table
from rich import box

from aurora_sentinel.utils.time import format_timestamp, from_epoch_ms
from .constants import SubstormStatus, classify_flux, flux_class_label
from .feeds import Feed


console = Console()


def _ts(ms: int) -> str:
    return format_timestamp(from_epoch_ms(ms))


class StatusFormatter:
    """
    Format status reports using Rich.
    """

    SUBSTORM_STYLES = {
        SubstormStatus.QUIET: Style(color="green"),
        SubstormStatus.WATCH: Style(color="yellow"),
        SubstormStatus.LIKELY_60: Style(color="bright_yellow", bold=True),
        SubstormStatus.IMMINENT_30: Style(color="red", bold=True),
        SubstormStatus.ONSET: Style(color="bright_red", bold=True),
    }

    SUBSTORM_ICONS = {
        SubstormStatus.QUIET: '🟢',
        SubstormStatus.WATCH: '🟡',
        SubstormStatus.LIKELY_60: '🟠',
        SubstormStatus.IMMINENT_30: '🔴',
        SubstormStatus.ONSET: '💥',
    }

    FEED_LABELS = {
        Feed.PLASMA: 'DSCOVR plasma',
        Feed.MAG: 'DSCOVR IMF',
        Feed.GOES_PRIMARY: 'GOES Hp (primary)',
        Feed.GOES_SECONDARY: 'GOES Hp (secondary)',
        Feed.XRAY: 'GOES X-ray',
        Feed.FORECAST: 'Aurora forecast',
        Feed.IPS: 'IPS shocks',
        Feed.GROUND_MAG: 'Ground magnetometer',
    }

    def __init__(self, target: Console = None):
        self.console = target or console

    def print_header(self, ctx):
        header = Panel(
            f"[bold white]{_ts(ctx.now_ms)}[/]",
            title="[bold cyan]🌌 AURORA SENTINEL[/]",
            border_style="cyan",
            box=box.DOUBLE,
        )
        self.console.print(header)

    def print_forecast(self, ctx):
        score = ctx.score
        if score is None:
            self.console.print(Panel("[dim]Data unavailable[/]", title="🌌 AURORA SCORE", border_style="dim"))
            return
        style = "bold red" if score >= 60 else "bold yellow" if score >= 40 else "green"
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("Label", style="dim")
        table.add_column("Value")
        table.add_row("Score", f"[{style}]{score:.0f}%[/]")
        if ctx.forecast.last_updated:
            table.add_row("Updated", f"[dim]{_ts(ctx.forecast.last_updated)}[/]")
        self.console.print(Panel(table, title="🌌 AURORA SCORE", border_style="blue"))

    def print_solar_wind(self, ctx):
        if not ctx.plasma and not ctx.mag:
            self.console.print(Panel("[dim]Data unavailable[/]", title="💨 SOLAR WIND", border_style="dim"))
            return

        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("Label", style="dim")
        table.add_column("Value")

        if ctx.plasma:
            p = ctx.plasma[-1]
            if p.speed is not None:
                speed_style = "red" if p.speed > 600 else "yellow" if p.speed > 450 else "green"
                table.add_row("Speed", f"[{speed_style}]{p.speed:.0f}[/] km/s")
            if p.density is not None:
                table.add_row("Density", f"{p.density:.2f} p/cm³")
        if ctx.mag:
            m = ctx.mag[-1]
            bz_style = "red" if m.bz < -10 else "yellow" if m.bz < -3 else "green"
            table.add_row("Bz", f"[{bz_style}]{m.bz:.1f}[/] nT")
            table.add_row("Bt", f"{m.bt:.1f} nT")

        inputs = ctx.assessment.inputs if ctx.assessment else None
        if inputs is not None:
            table.add_row("", "")
            table.add_row("dΦ/dt now", f"{inputs.dphi_now:.1f}")
            table.add_row("dΦ/dt 15-min", f"{inputs.dphi_mean15:.1f}")
            table.add_row("Sustained south", "[red]yes[/]" if inputs.sustained_south else "no")

        self.console.print(Panel(table, title="💨 SOLAR WIND (L1)", border_style="blue"))

    def print_xray_status(self, ctx):
        flux = ctx.latest_xray_flux
        if flux is None:
            self.console.print(Panel("[dim]Data unavailable[/]", title="🌡️ GOES X-RAY", border_style="dim"))
            return
        letter, _ = classify_flux(flux)
        style, icon = {
            'X': ("bold red", "🔴"),
            'M': ("bold yellow", "🟠"),
            'C': ("yellow", "🟡"),
        }.get(letter, ("green", "🟢"))

        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("Label", style="dim")
        table.add_column("Value")
        table.add_row("Flux", f"[bold]{flux:.2e}[/] W/m²")
        table.add_row("Class", f"[{style}]{icon} {flux_class_label(flux)}[/]")
        table.add_row("Time", f"[dim]{_ts(ctx.xray[-1].time)}[/]")
        self.console.print(Panel(table, title="🌡️ GOES X-RAY", border_style="blue"))

    def print_substorm(self, ctx):
        a = ctx.assessment
        if a is None:
            return
        style = self.SUBSTORM_STYLES.get(a.status, Style())
        icon = self.SUBSTORM_ICONS.get(a.status, '')

        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("Label", style="dim")
        table.add_column("Value")
        table.add_row("Status", f"{icon} [{style}]{a.status}[/]")
        table.add_row("Likelihood", f"{a.likelihood_pct}%  [dim](P30 {a.p30:.0%}, P60 {a.p60:.0%})[/]")
        table.add_row("Reason", a.reason)
        self.console.print(Panel(table, title="⚡ SUBSTORM", border_style="magenta",
                                 subtitle="[dim]Heuristic[/]"))

    def print_events(self, ctx, limit: int = 5):
        if not ctx.events:
            return
        table = Table(title="Ground magnetometer events", box=box.SIMPLE)
        table.add_column("Start")
        table.add_column("End")
        table.add_column("Duration", justify="right")
        table.add_column("Max |dB/dt|", justify="right")
        for e in ctx.events[-limit:]:
            table.add_row(_ts(e.start), _ts(e.end), f"{e.duration_minutes:.0f} min",
                          f"{e.max_delta:.1f} nT/min")
        self.console.print(table)

    def print_feed_status(self, ctx):
        down = [self.FEED_LABELS.get(name, name) for name, ok in ctx.available.items() if not ok]
        if down:
            self.console.print(f"  [yellow]⚠ Unavailable this cycle:[/] {', '.join(down)}")

    def print_alerts(self, alerts: list):
        if not alerts:
            return
        table = Table(title="🔔 Alerts fired", box=box.ROUNDED)
        table.add_column("Topic", style="bold")
        table.add_column("Title")
        for a in alerts:
            table.add_row(a.topic, a.title)
        self.console.print(table)

    def print_report(self, ctx, alerts: list = None):
        self.print_header(ctx)
        self.print_forecast(ctx)
        self.print_solar_wind(ctx)
        self.print_xray_status(ctx)
        self.print_substorm(ctx)
        self.print_events(ctx)
        self.print_feed_status(ctx)
        self.print_alerts(alerts or [])
