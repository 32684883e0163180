"""
Rich console output and Matplotlib dashboard generation.
"""

from __future__ import annotations

import os
from typing import Dict, Tuple

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .config import (
    FACTORY_LOCATION, FACTORY_NAME, PRODUCTS, SCENARIOS, SHIFT_HOURS,
    STATIONS, STRATEGIES,
)
from .scheduler import ScheduleResult

console = Console()

# Colour palette
PRODUCT_COLORS = {p: PRODUCTS[p]["color"] for p in PRODUCTS}
SCENARIO_COLORS = {
    "no_material": "#6C757D",
    "reactive":    "#E63946",
    "controlled":  "#F4A261",
    "predictive":  "#2EC4B6",
    "breakdowns":  "#2E86AB",
}


# ─────────────────────────────────────────────────────────────────────────────
# Banner
# ─────────────────────────────────────────────────────────────────────────────

def print_banner(strategy: str = "balanced") -> None:
    lines = [
        f"[bold white]{FACTORY_NAME}[/bold white]",
        f"[dim]{FACTORY_LOCATION}  ·  {len(STATIONS)} stations  ·  {len(PRODUCTS)} chassis types[/dim]",
        "",
        "[bold cyan]Assembly Dispatch Discrete-Event Simulation[/bold cyan]",
        f"[dim]AssemblySim v1.0  ·  SimPy engine  ·  {SHIFT_HOURS}-hour shift  ·  "
        f"strategy: {STRATEGIES[strategy]['label']}[/dim]",
    ]
    console.print(Panel("\n".join(lines), style="bold blue", expand=False))
    console.print()


def _pct(v, good_above=90):
    colour = "green" if v >= good_above else ("yellow" if v >= 75 else "red")
    return f"[{colour}]{v:.1f}%[/{colour}]"


# ─────────────────────────────────────────────────────────────────────────────
# Per-scenario KPI summary
# ─────────────────────────────────────────────────────────────────────────────

def print_kpi_table(scenario_id: str, kpis: dict) -> None:
    scen = SCENARIOS[scenario_id]
    title = f"[bold]{scen['label']}[/bold]  —  {scen['description']}"
    console.rule(title)

    t = Table(box=box.SIMPLE_HEAD, show_header=True, header_style="bold magenta")
    t.add_column("KPI",        style="cyan",  min_width=32)
    t.add_column("Value",      style="white", justify="right", min_width=16)
    t.add_column("Assessment", style="dim",   min_width=20)

    def row(label, value, assessment=""):
        t.add_row(label, value, assessment)

    # Throughput
    row("── Throughput ──────────────────", "", "")
    row("  Jobs released",
        f"{kpis['jobs_released']:>12,d}", "")
    row("  Jobs completed",
        f"{kpis['jobs_completed']:>12,d}",
        f"{kpis['throughput_per_hr']:.2f} jobs/h")
    row("  Still in progress",
        f"{kpis['jobs_in_progress']:>12,d}", "")
    row("  Infeasible jobs",
        f"{kpis['jobs_infeasible']:>12,d}",
        "[red]check station capabilities[/red]" if kpis["jobs_infeasible"] else "")

    # Lead time
    row("── Lead time ───────────────────", "", "")
    row("  Avg lead time",
        f"{kpis['avg_lead_time_min']:>10.1f} min", "")
    row("    transport",
        f"{kpis['avg_transport_min']:>10.1f} min", "")
    row("    working",
        f"{kpis['avg_working_min']:>10.1f} min", "")
    row("    waiting",
        f"{kpis['avg_waiting_min']:>10.1f} min",
        f"incl. {kpis['avg_unaccounted_min']:.1f} min unaccounted")
    row("  On-time completion",
        _pct(kpis["on_time_pct"]), "")
    row("  Rush orders on time",
        _pct(kpis["rush_on_time_pct"]), "")
    row("  Avg tardiness of late jobs",
        f"{kpis['avg_tardiness_min']:>10.1f} min", "")

    # Stations
    row("── Stations ────────────────────", "", "")
    row("  Avg station utilisation",
        f"{kpis['avg_station_utilization_pct']:>11.1f}%", "")
    row("  Breakdowns",
        f"{kpis['total_breakdowns']:>12,d}",
        f"{kpis['breakdown_minutes']:.0f} min down")
    row("  Plans aborted",
        f"{kpis['aborted_plans']:>12,d}", "")

    # Material
    row("── Material flow ───────────────", "", "")
    row("  AGV deliveries",
        f"{kpis['deliveries']:>12,d}",
        f"avg {kpis['avg_delivery_lead_s']:.0f} s lead")
    row("  Deliveries cancelled",
        f"{kpis['deliveries_cancelled']:>12,d}", "")
    row("  Jobs parked for a free AGV",
        f"{kpis['material_pending_events']:>12,d}",
        "[yellow]fleet too small?[/yellow]" if kpis["material_pending_events"] > 20 else "")
    row("  Material forecasts",
        f"{kpis['forecasts']:>12,d}", "")

    console.print(t)
    console.print()


# ─────────────────────────────────────────────────────────────────────────────
# Cross-scenario comparison table
# ─────────────────────────────────────────────────────────────────────────────

def print_comparison_table(results: Dict[str, Tuple]) -> None:
    console.rule("[bold yellow]Scenario Comparison (one shift)[/bold yellow]")

    t = Table(box=box.DOUBLE_EDGE, show_header=True, header_style="bold yellow")
    t.add_column("Metric", style="cyan", min_width=30)

    scen_ids = list(results.keys())
    for sid in scen_ids:
        colour = SCENARIO_COLORS.get(sid, "white")
        t.add_column(
            Text(SCENARIOS[sid]["label"], style=f"bold {colour}"),
            justify="right", min_width=16,
        )

    kpis_list = [results[s][1] for s in scen_ids]

    rows = [
        ("Jobs completed",         "jobs_completed",              ","),
        ("Throughput (jobs/h)",    "throughput_per_hr",           "f2"),
        ("Avg lead time (min)",    "avg_lead_time_min",           "f1"),
        ("Avg waiting (min)",      "avg_waiting_min",             "f1"),
        ("On-time completion",     "on_time_pct",                 "pct"),
        ("Station utilisation",    "avg_station_utilization_pct", "pct"),
        ("AGV deliveries",         "deliveries",                  ","),
        ("Parked for AGV",         "material_pending_events",     ","),
        ("Plans aborted",          "aborted_plans",               ","),
        ("Infeasible jobs",        "jobs_infeasible",             ","),
    ]

    for label, key, fmt in rows:
        vals = []
        for k in kpis_list:
            v = k.get(key, 0)
            if fmt == "pct":
                vals.append(_pct(v))
            elif fmt == "f2":
                vals.append(f"{v:.2f}")
            elif fmt == "f1":
                vals.append(f"{v:.1f}")
            else:
                vals.append(f"{v:,.0f}")
        t.add_row(label, *vals)

    console.print(t)
    console.print()


# ─────────────────────────────────────────────────────────────────────────────
# Fleet schedule
# ─────────────────────────────────────────────────────────────────────────────

def print_schedule(result: ScheduleResult, params: dict) -> None:
    best = result.best
    console.rule(
        f"[bold]Robust fleet schedule[/bold]  —  N={params['n_vehicles']}  "
        f"R={params['r']}  P={params['p']}  B={params['b']}"
    )

    t = Table(box=box.SIMPLE_HEAD, show_header=True, header_style="bold magenta")
    for col, justify in (("AGV", "left"), ("Job", "left"), ("Start", "right"),
                         ("Duration", "right"), ("Finish", "right"), ("Deadline", "right"),
                         ("Delay", "right"), ("Weighted", "right"), ("Back at", "right")):
        t.add_column(col, justify=justify, style="cyan" if col == "AGV" else "white")

    for vid, entries in best.ledgers.items():
        for i, e in enumerate(entries):
            colour = "red" if e.delay > 0 else "green"
            t.add_row(
                vid if i == 0 else "",
                e.job,
                f"{e.start:.2f}", f"{e.duration:.2f}", f"{e.finish:.2f}",
                f"{e.deadline:.2f}",
                f"[{colour}]{e.delay:+.2f}[/{colour}]",
                f"{e.weighted_delay:+.3f}",
                f"{e.return_at:.2f}",
            )
    console.print(t)

    s = Table(box=box.SIMPLE, show_header=False)
    s.add_column("", style="cyan")
    s.add_column("", justify="right")
    s.add_row("Permutations explored", f"{result.explored:,d}")
    s.add_row("Candidates retained", f"{len(result.candidates):,d}")
    s.add_row("Weighted delay (search)", f"{best.weighted_delay:.3f}")
    s.add_row("Total delay (search)", f"{best.total_delay:.2f}")
    s.add_row("Total delay (probable deadlines)", f"{result.realistic.total_delay:.2f}")
    s.add_row("Makespan", f"{best.makespan:.2f}")
    console.print(s)
    console.print(f"[dim]Job order: {' → '.join(best.job_order)}[/dim]")
    console.print()


# ─────────────────────────────────────────────────────────────────────────────
# Matplotlib dashboard
# ─────────────────────────────────────────────────────────────────────────────

def _style_ax(ax, title):
    ax.set_title(title, fontsize=9, fontweight="bold", pad=6)
    ax.tick_params(labelsize=7)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    ax.grid(axis="y", alpha=0.3)


def plot_scenario_dashboard(factory, kpis: dict, scenario_id: str, out_dir: str) -> str:
    """
    Generate a 3×2 matplotlib dashboard for a single scenario.
    Returns the saved file path.
    """
    snaps = factory.metrics.snapshots
    if not snaps:
        return ""

    hours      = np.array([s["time"] / 3_600 for s in snaps])
    prod_names = list(PRODUCTS.keys())

    fig, axes = plt.subplots(2, 3, figsize=(15, 8))
    fig.suptitle(
        f"{FACTORY_NAME}  ·  {SCENARIOS[scenario_id]['label']}\n"
        f"{SCENARIOS[scenario_id]['description']}",
        fontsize=11, fontweight="bold", y=1.01,
    )
    plt.subplots_adjust(hspace=0.45, wspace=0.35)

    # ── (0,0) Work in progress ────────────────────────────────────────────
    ax = axes[0][0]
    ax.plot(hours, [s["wip"] for s in snaps], color="#2E86AB", linewidth=1.5, label="WIP")
    ax.plot(hours, [s["completed"] for s in snaps], color="#2EC4B6", linewidth=1.5,
            label="Completed")
    ax.plot(hours, [s["pending"] for s in snaps], color="#E63946", linewidth=1.0,
            linestyle="--", label="Waiting for AGV")
    for b in factory.metrics.breakdowns:
        ax.axvspan(b.occurred_at / 3_600, b.resolved_at / 3_600, color="#E63946", alpha=0.08)
    ax.set_ylabel("Jobs", fontsize=8)
    ax.set_xlabel("Hour", fontsize=8)
    ax.legend(fontsize=6)
    _style_ax(ax, "Work in Progress")

    # ── (0,1) Station queue lengths ───────────────────────────────────────
    ax = axes[0][1]
    for sid in STATIONS:
        ax.step(hours, [s["queued"].get(sid, 0) for s in snaps], where="post",
                linewidth=1.2, label=sid)
    ax.set_ylabel("Queued jobs", fontsize=8)
    ax.set_xlabel("Hour", fontsize=8)
    ax.legend(fontsize=6, ncol=2)
    _style_ax(ax, "Station Queues")

    # ── (0,2) Lead time decomposition per product ─────────────────────────
    ax = axes[0][2]
    done = factory.metrics.completed_jobs
    parts = (("transport_time", "Transport", "#F4A261"),
             ("working_time",   "Working",   "#2E86AB"),
             ("waiting_time",   "Waiting",   "#E63946"))
    bottom = np.zeros(len(prod_names))
    for attr, label, col in parts:
        vals = np.array([
            np.mean([getattr(j.metrics, attr) for j in done if j.product.name == p] or [0.0]) / 60
            for p in prod_names
        ])
        ax.bar(prod_names, vals, bottom=bottom, color=col, label=label, alpha=0.85)
        bottom += vals
    ax.set_ylabel("Minutes", fontsize=8)
    ax.legend(fontsize=6)
    _style_ax(ax, "Avg Lead Time by Product")

    # ── (1,0) Station utilisation ─────────────────────────────────────────
    ax = axes[1][0]
    util = kpis["station_utilization"]
    labels    = list(util.keys())
    util_vals = [util[s] * 100 for s in labels]
    bars = ax.barh(labels, util_vals, color="#2E86AB", alpha=0.85)
    ax.axvline(85, color="red", linewidth=1.0, linestyle="--", alpha=0.7, label="85 % threshold")
    ax.set_xlim(0, 105)
    ax.set_xlabel("Utilisation (%)", fontsize=8)
    for bar, v in zip(bars, util_vals):
        ax.text(v + 1, bar.get_y() + bar.get_height() / 2,
                f"{v:.0f}%", va="center", fontsize=7)
    ax.legend(fontsize=6)
    _style_ax(ax, "Station Utilisation")

    # ── (1,1) Deliveries per AGV ──────────────────────────────────────────
    ax = axes[1][1]
    per_agv = kpis["deliveries_by_agv"]
    ax.bar(list(per_agv.keys()), list(per_agv.values()),
           color=SCENARIO_COLORS.get(scenario_id, "#2E86AB"), alpha=0.85)
    ax.set_ylabel("Deliveries", fontsize=8)
    _style_ax(ax, "AGV Deliveries")

    # ── (1,2) Completion vs due date ──────────────────────────────────────
    ax = axes[1][2]
    if done:
        for prod in prod_names:
            jobs = [j for j in done if j.product.name == prod]
            if not jobs:
                continue
            due  = np.array([j.due_date for j in jobs]) / 3_600
            comp = np.array([j.metrics.completed_at for j in jobs]) / 3_600
            ax.scatter(due, comp, s=14, color=PRODUCT_COLORS[prod], label=prod, alpha=0.85)
        lim = max(ax.get_xlim()[1], ax.get_ylim()[1])
        ax.plot([0, lim], [0, lim], color="grey", linewidth=0.8, linestyle="--",
                label="on time")
        ax.set_xlabel("Due (h)", fontsize=8)
        ax.set_ylabel("Completed (h)", fontsize=8)
        ax.legend(fontsize=6)
    _style_ax(ax, "Completion vs. Due Date")

    os.makedirs(out_dir, exist_ok=True)
    path = os.path.join(out_dir, f"dashboard_{scenario_id}.png")
    fig.savefig(path, dpi=130, bbox_inches="tight")
    plt.close(fig)
    return path


def plot_comparison_chart(results: Dict[str, Tuple], out_dir: str) -> str:
    """
    Side-by-side bar chart comparing the scenarios on 6 key KPIs.
    Returns the saved file path.
    """
    scen_ids  = list(results.keys())
    labels    = [SCENARIOS[s]["label"] for s in scen_ids]
    colors    = [SCENARIO_COLORS.get(s, "#2E86AB") for s in scen_ids]

    metrics_to_compare = [
        ("jobs_completed",              "Jobs Completed",              None),
        ("avg_lead_time_min",           "Avg Lead Time\n(min)",        None),
        ("on_time_pct",                 "On-Time Completion\n(%)",     90),
        ("avg_station_utilization_pct", "Station Utilisation\n(%)",    85),
        ("material_pending_events",     "Jobs Parked for AGV",         None),
        ("aborted_plans",               "Aborted Plans",               None),
    ]

    fig, axes = plt.subplots(2, 3, figsize=(14, 7))
    fig.suptitle(
        f"{FACTORY_NAME}  ·  Material-Supply Policy Comparison",
        fontsize=12, fontweight="bold",
    )
    plt.subplots_adjust(hspace=0.55, wspace=0.40)

    for idx, (key, title, target) in enumerate(metrics_to_compare):
        ax   = axes[idx // 3][idx % 3]
        vals = [results[s][1].get(key, 0) for s in scen_ids]
        bars = ax.bar(labels, vals, color=colors, alpha=0.85, edgecolor="white")

        if target is not None:
            ax.axhline(target, color="red", linewidth=1.0,
                       linestyle="--", alpha=0.7, label=f"Target {target}")
            ax.legend(fontsize=6)

        for bar, v in zip(bars, vals):
            fmt = f"{v:,.0f}" if abs(v) >= 100 else f"{v:.1f}"
            ax.text(
                bar.get_x() + bar.get_width() / 2,
                bar.get_height() * 1.01,
                fmt, ha="center", va="bottom", fontsize=7,
            )

        ax.set_xticks(range(len(labels)))
        ax.set_xticklabels(labels, fontsize=7, rotation=15, ha="right")
        _style_ax(ax, title)

    os.makedirs(out_dir, exist_ok=True)
    path = os.path.join(out_dir, "scenario_comparison.png")
    fig.savefig(path, dpi=130, bbox_inches="tight")
    plt.close(fig)
    return path


def plot_schedule_gantt(result: ScheduleResult, out_dir: str) -> str:
    """Gantt chart of the best fleet schedule; the return trip is hatched."""
    best = result.best
    vids = list(best.ledgers.keys())

    fig, ax = plt.subplots(figsize=(12, 0.6 * len(vids) + 2))
    fig.suptitle("Robust Fleet Schedule", fontsize=11, fontweight="bold")
    cmap = plt.get_cmap("tab20")

    for row, vid in enumerate(vids):
        for i, e in enumerate(best.ledgers[vid]):
            col = cmap((row * 3 + i) % 20)
            ax.barh(row, e.duration, left=e.start, color=col, edgecolor="white")
            ax.barh(row, e.return_at - e.finish, left=e.finish, color=col,
                    alpha=0.35, hatch="//", edgecolor="white")
            ax.text(e.start + e.duration / 2, row, e.job, ha="center", va="center", fontsize=6)
            if e.delay > 0:
                ax.plot([e.deadline, e.deadline], [row - 0.4, row + 0.4],
                        color="red", linewidth=1.0)

    ax.set_yticks(range(len(vids)))
    ax.set_yticklabels(vids)
    ax.invert_yaxis()
    ax.set_xlabel("Time", fontsize=8)
    _style_ax(ax, f"weighted delay {best.weighted_delay:.3f}  ·  makespan {best.makespan:.2f}")

    os.makedirs(out_dir, exist_ok=True)
    path = os.path.join(out_dir, "fleet_schedule.png")
    fig.savefig(path, dpi=130, bbox_inches="tight")
    plt.close(fig)
    return path
