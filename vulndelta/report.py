"""Change report generation using Jinja2 templates.

Renders the outcome of one tick (every feed's ``ChangeResult`` or
``CheckError``) as GitHub-renderable Markdown.  The default template
lives at ``vulndelta/templates/changes.md.j2``.
"""

import datetime as dt
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .errors import CheckError
from .models import ChangeResult

_TEMPLATES_DIR = Path(__file__).parent / "templates"


def _now_utc_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat()


def _environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(_TEMPLATES_DIR)),
        autoescape=select_autoescape(default_for_string=False, default=False),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )


def render_markdown_report(results: dict[str, ChangeResult | CheckError]) -> str:
    """Render a Markdown report for one tick.

    Args:
        results: Feed id to ``ChangeResult`` or ``CheckError``.

    Returns:
        The rendered Markdown.
    """
    succeeded = {k: v for k, v in results.items() if isinstance(v, ChangeResult)}
    failed = {k: v for k, v in results.items() if isinstance(v, CheckError)}

    template = _environment().get_template("changes.md.j2")
    return template.render(
        generated_at=_now_utc_iso(),
        total_changes=sum(len(r) for r in succeeded.values()),
        results=succeeded,
        failures=failed,
    )


def write_markdown_report(path: Path, results: dict[str, ChangeResult | CheckError]) -> None:
    """Write the Markdown report for one tick atomically.

    Args:
        path: Output path for the markdown report.
        results: Feed id to ``ChangeResult`` or ``CheckError``.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    rendered = render_markdown_report(results)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        f.write(rendered)
    tmp.replace(path)
