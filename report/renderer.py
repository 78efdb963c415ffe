"""
Report renderer: generate JSON, Markdown and HTML digests from a Report.
Markdown and HTML are rendered from Jinja2 templates under report/templates.
"""

from typing import Dict, Optional
import json
import os
from jinja2 import Environment, FileSystemLoader, select_autoescape
from correlate.models import Report, SCORE_AXES

TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), 'templates')

AXIS_LABELS = {
    'code_volume': 'Volume',
    'complexity': 'Complexity',
    'technical_depth': 'Depth',
    'scope': 'Scope',
    'review_contribution': 'Reviews',
}

# CSS custom properties per theme; the template only references the variables
THEMES: Dict[str, Dict[str, str]] = {
    'default': {'bg': '#f5f7fa', 'panel': '#ffffff', 'text': '#1f2933', 'muted': '#616e7c', 'accent': '#2563eb', 'border': '#d9e2ec', 'warn': '#b45309'},
    'light': {'bg': '#ffffff', 'panel': '#fafafa', 'text': '#111111', 'muted': '#555555', 'accent': '#0f766e', 'border': '#e5e5e5', 'warn': '#a16207'},
    'dark': {'bg': '#0f172a', 'panel': '#1e293b', 'text': '#e2e8f0', 'muted': '#94a3b8', 'accent': '#60a5fa', 'border': '#334155', 'warn': '#fbbf24'},
}

_env: Optional[Environment] = None


def _md_cell(value) -> str:
    """Make a value safe inside a Markdown table cell."""
    return str(value if value is not None else '').replace('|', '\\|').replace('\r', ' ').replace('\n', ' ').strip()


def _environment() -> Environment:
    global _env
    if _env is None:
        _env = Environment(
            loader=FileSystemLoader(TEMPLATE_DIR),
            autoescape=select_autoescape(['html', 'xml', 'html.j2']),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        _env.filters['md_cell'] = _md_cell
    return _env


def _context(report: Report) -> Dict:
    return {
        'report': report,
        'totals': report.totals(),
        'axes': SCORE_AXES,
        'axis_labels': AXIS_LABELS,
    }


def render_json(report: Report) -> str:
    """Export the full canonical report as JSON."""
    return json.dumps(report.to_dict(), indent=2, default=str)


def render_markdown(report: Report) -> str:
    """Render overview, organization and user tables as Markdown."""
    return _environment().get_template('report.md.j2').render(**_context(report))


def render_html(report: Report, theme: str = 'default', title: str = '') -> str:
    """Render a self-contained HTML dashboard. Unknown themes raise ValueError."""
    if theme not in THEMES:
        raise ValueError(f"Unknown HTML theme {theme!r}; choose one of {', '.join(THEMES)}")
    context = _context(report)
    context.update({
        'theme': THEMES[theme],
        'theme_name': theme,
        'title': title or f"Team Activity Report - {report.generated_at.strftime('%Y-%m-%d')}",
    })
    return _environment().get_template('report.html.j2').render(**context)


# file extension per format
EXTENSIONS = {'json': 'json', 'markdown': 'md', 'html': 'html'}


def render(report: Report, fmt: str = 'json', theme: str = 'default', title: str = '') -> str:
    """Main render function."""
    fmt_l = (fmt or 'json').lower()
    if fmt_l in ('md', 'markdown'):
        return render_markdown(report)
    if fmt_l in ('html', 'htm'):
        return render_html(report, theme=theme, title=title)
    if fmt_l == 'json':
        return render_json(report)
    raise ValueError(f"Unknown output format {fmt!r}")


__all__ = ["render", "render_json", "render_markdown", "render_html", "THEMES", "EXTENSIONS"]
