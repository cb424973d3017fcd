# site_audit/report/json_report.py

"""
Генерация JSON-отчёта для проекта SiteAudit.

Сериализация объекта BatchReport в файл.
"""
import json
from pathlib import Path

from site_audit.engine import BatchReport


def render_json(report: BatchReport, output_path: Path | str, *, include_raw: bool = False) -> Path:
    """
    Сохраняет отчёт report в формате JSON по указанному пути.

    :param report: объект BatchReport с результатами аудита
    :param output_path: путь к JSON-файлу
    :param include_raw: добавить полный JSON Lighthouse для каждого URL
    :return: Path сохранённого файла

    Пример:
    ```python
    from site_audit.report.json_report import render_json
    report_path = render_json(report, 'reports/audit.json')
    print(f"JSON report saved to: {report_path}")
    ```
    """
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)

    data = report.to_dict()
    if include_raw:
        data['results'] = [r.to_dict(include_raw=True) for r in report.results]

    with output.open('w', encoding='utf-8') as f:
        json.dump(data, f, ensure_ascii=False, indent=2)

    return output
