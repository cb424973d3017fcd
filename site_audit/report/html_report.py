"""site_audit.report.html_report: Генерация HTML-отчёта с помощью Jinja2."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Union

from jinja2 import Environment, FileSystemLoader, select_autoescape

from site_audit.engine import BatchReport

DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"


def score_class(score: int) -> str:
    """CSS-класс оценки: как у Lighthouse, 90+ хорошо, 50–89 средне."""
    if score >= 90:
        return "good"
    if score >= 50:
        return "average"
    return "poor"


def render_html(
    report: BatchReport,
    template_dir: Union[Path, str, None],
    output_path: Union[Path, str],
) -> Path:
    """Рендерит HTML-отчёт из шаблона и сохраняет его по указанному пути.

    Args:
        report: объект BatchReport.
        template_dir: директория с Jinja2-шаблонами (None — встроенный шаблон).
        output_path: путь к итоговому HTML-файлу.

    Returns:
        Path до сохранённого HTML-файла.
    """
    template_dir = Path(template_dir) if template_dir else DEFAULT_TEMPLATE_DIR
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    env = Environment(
        loader=FileSystemLoader(str(template_dir)),
        autoescape=select_autoescape(["html", "xml", "j2"]),
    )
    env.filters["score_class"] = score_class
    template = env.get_template("report.html.j2")

    context: dict[str, Any] = {
        "device": report.device.value,
        "started_at": report.started_at,
        "finished_at": report.finished_at,
        "results": report.results,
        "invalid": report.invalid,
    }

    output_path.write_text(template.render(**context), encoding="utf-8")
    return output_path
