# File: site_audit/report/__init__.py
"""site_audit.report: генерация отчётов по пакету аудитов (JSON и HTML)."""

from site_audit.report.html_report import DEFAULT_TEMPLATE_DIR, render_html
from site_audit.report.json_report import render_json

__all__ = ["render_json", "render_html", "DEFAULT_TEMPLATE_DIR"]
