"""
Report renderer: text/Markdown/CSV/JSON/HTML views of a WeekPlan.
HTML is rendered with Jinja2 from report/templates/week.html.j2.
"""

from typing import List, Optional
import os
import json
import io
import csv

from jinja2 import Environment, FileSystemLoader, select_autoescape

from normalize.models import TimesheetDay, WeekPlan

TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), 'templates')


def format_hours(hours: float) -> str:
    """8.0 -> '8h', 6.5 -> '6.5h', 0.25 -> '0.25h'"""
    return f"{hours:g}h"


def _day_header(day: TimesheetDay) -> str:
    return f"--- {day.weekday} ({day.date}) - {format_hours(day.total_hours)} ---"


def _status_line(plan: WeekPlan) -> str:
    if plan.dry_run:
        return "Dry run: no worklogs created"
    return f"Created {plan.worklogs_created} worklogs"


def render_text(plan: WeekPlan) -> str:
    """Plain-text summary, one block per day."""
    lines: List[str] = [f"Timesheet for week of {plan.week_start}", ""]
    for day in plan.days:
        lines.append(_day_header(day))
        if day.no_activity:
            lines.append("  (no activity)")
        for e in day.entries:
            lines.append(f"  {e.issue_key}: {format_hours(e.hours)} - {e.description}")
        lines.append("")
    lines.append(f"Total: {format_hours(plan.total_hours)}")
    lines.append(_status_line(plan))
    if plan.errors:
        lines.append("")
        lines.append("Warnings:")
        lines.extend(f"  - {err}" for err in plan.errors)
    return "\n".join(lines)


def render_markdown(plan: WeekPlan) -> str:
    md = [f"# Timesheet: week of {plan.week_start}\n"]
    for day in plan.days:
        md.append(f"## {day.weekday} {day.date} ({format_hours(day.total_hours)})\n")
        if not day.entries:
            md.append("_No activity._\n")
            continue
        md.append("| Issue | Hours | Description | Meeting |")
        md.append("|---|---|---|---|")
        for e in day.entries:
            desc = e.description.replace('|', '\\|')
            md.append(f"| {e.issue_key} | {e.hours:g} | {desc} | {'yes' if e.is_fixed_meeting else ''} |")
        md.append("")
    md.append(f"**Total: {format_hours(plan.total_hours)}** · {_status_line(plan)}")
    if plan.errors:
        md.append("\n### Warnings\n")
        md.extend(f"- {err}" for err in plan.errors)
    return "\n".join(md)


def render_csv(plan: WeekPlan) -> str:
    """One row per entry; days without entries are omitted."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(['date', 'weekday', 'issue_key', 'hours', 'description', 'project', 'is_fixed_meeting'])
    for day in plan.days:
        for e in day.entries:
            writer.writerow([day.date, day.weekday, e.issue_key, e.hours, e.description, e.project, e.is_fixed_meeting])
    return output.getvalue()


def render_json(plan: WeekPlan) -> str:
    data = plan.to_dict()
    data['total_hours'] = plan.total_hours
    return json.dumps(data, indent=2)


def render_html(plan: WeekPlan, generated_at: Optional[str] = None) -> str:
    env = Environment(loader=FileSystemLoader(TEMPLATE_DIR), autoescape=select_autoescape(['html', 'xml', 'j2']))
    env.filters['hours'] = format_hours
    tmpl = env.get_template('week.html.j2')
    return tmpl.render(plan=plan, status=_status_line(plan), generated_at=generated_at)


def render(plan: WeekPlan, fmt: str = 'text', generated_at: Optional[str] = None) -> str:
    """Render a WeekPlan in the requested format (text, md, csv, json or html)."""
    fmt_l = (fmt or 'text').lower()
    if fmt_l in ('md', 'markdown'):
        return render_markdown(plan)
    if fmt_l == 'csv':
        return render_csv(plan)
    if fmt_l in ('html', 'htm'):
        return render_html(plan, generated_at=generated_at)
    if fmt_l in ('json', 'js'):
        return render_json(plan)
    return render_text(plan)
