# === FILE: site_audit/cli.py ===
#!/usr/bin/env python3
"""
Точка входа для запуска SiteAudit через командную строку.

Команды:
  analyze   Проверить список URL через Lighthouse и вывести/сохранить отчёт
  config    Показать текущую конфигурацию
  history   Показать сохранённые отчёты сайта
  sites     Список сайтов с мониторингом и последним отчётом
  report    Показать один отчёт по id (--raw добавляет JSON Lighthouse)
  watch     Включить/выключить периодический мониторинг сайта
  monitor   Выполнить один цикл мониторинга (запускать из cron)

Общие опции:
  --config PATH       Путь к YAML/JSON-конфигу (default: configs/default.yaml, если есть)
  --log-level LEVEL   Уровень логирования (DEBUG, INFO, ...)
  --log-file PATH     Файл для логов (stderr, если не указан)
  --log-format FORMAT Формат логирования

Команда analyze опции:
  --file PATH         Файл со списком URL (по одному в строке или через запятую)
  --device            mobile | desktop
  --json PATH         Сохранить JSON-отчёт в файл
  --html PATH         Сохранить HTML-отчёт в файл
  --template DIR      Папка с Jinja2-шаблонами
  --pretty            Преформатировать JSON-вывод (отступ 2)
  --save              Сохранить успешные результаты в историю

Пример:
  site-audit analyze example.com https://python.org --device desktop --pretty
"""
import asyncio
import json
import sys
from pathlib import Path

import click

from site_audit import __version__
from site_audit.config import load_config
from site_audit.engine import TooManyUrlsError, check_url_limit, start_audit
from site_audit.history import HistoryStore
from site_audit.logger import DEFAULT_FORMAT, init_logging
from site_audit.monitor import MonitorFrequency, monitor_once
from site_audit.report.html_report import render_html
from site_audit.report.json_report import render_json
from site_audit.url_utils import validate_url

CONTEXT_SETTINGS = dict(help_option_names=["--help"])
DEVICES = click.Choice(["mobile", "desktop"])


def print_error(message: str):
    click.secho(message, fg='red', err=True)
    sys.exit(1)


def _open_store(cfg) -> HistoryStore:
    try:
        return HistoryStore(cfg.history_path)
    except ValueError as e:
        print_error(f'Ошибка чтения истории: {e}')


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(__version__, '--version', '-v', message='SiteAudit, version %(version)s')
@click.option(
    '--config', '-c', 'config_path',
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Путь к файлу конфигурации YAML/JSON.'
)
@click.option(
    '--log-level', 'log_level',
    default='INFO', show_default=True,
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']),
    help='Уровень логирования'
)
@click.option(
    '--log-file', 'log_file',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Путь к файлу логов (stderr, если не указан)'
)
@click.option(
    '--log-format', 'log_format',
    default=DEFAULT_FORMAT,
    show_default=True,
    help='Строка формата для логов'
)
@click.pass_context
def cli(ctx, config_path, log_level, log_file, log_format):
    """Группа команд SiteAudit CLI."""
    init_logging(
        level=log_level,
        log_file=str(log_file) if log_file else None,
        log_format=log_format
    )
    try:
        cfg = load_config(config_path)
    except Exception as e:
        print_error(f'Ошибка загрузки конфигурации: {e}')
    ctx.ensure_object(dict)
    ctx.obj['config'] = cfg


@cli.command('analyze', context_settings=CONTEXT_SETTINGS)
@click.argument('urls', nargs=-1)
@click.option(
    '--file', '-f', 'url_file',
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Файл со списком URL'
)
@click.option('--device', '-d', 'device', type=DEVICES, default=None, help='Профиль устройства')
@click.option(
    '--json', '-j', 'json_output',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Сохранить JSON-отчёт в файл'
)
@click.option(
    '--html', '-h', 'html_output',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Сохранить HTML-отчёт в файл'
)
@click.option(
    '--template', '-t', 'template_dir',
    default=None,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help='Папка с Jinja2-шаблонами (по умолчанию встроенный шаблон)'
)
@click.option('--pretty', is_flag=True, help='Преформатировать JSON-вывод (отступ 2)')
@click.option('--save/--no-save', default=False, help='Сохранить успешные результаты в историю')
@click.pass_context
def analyze(ctx, urls, url_file, device, json_output, html_output, template_dir, pretty, save):
    """Запустить аудит URL и сгенерировать отчёты."""
    cfg = ctx.obj['config']
    inputs = list(urls)
    if url_file:
        inputs.extend(
            line.strip() for line in url_file.read_text(encoding='utf-8').splitlines() if line.strip()
        )
    if not inputs:
        print_error('Укажите хотя бы один URL')
    try:
        check_url_limit(inputs, cfg.max_urls)
    except TooManyUrlsError as e:
        print_error(str(e))

    store = _open_store(cfg) if save else None
    try:
        report = asyncio.run(start_audit(cfg, inputs, device, store))
    except Exception as e:
        print_error(f'Ошибка при аудите: {e}')

    if not report.results:
        details = '; '.join(f'{i.input}: {i.error}' for i in report.invalid)
        print_error(f'Нет корректных URL: {details}')

    # Если не сохраняем в файл — печатаем в stdout
    if not json_output and not html_output:
        click.echo(report.json(pretty=pretty))
        return

    if json_output:
        try:
            saved_json = render_json(report, json_output)
            click.echo(f'JSON report: {saved_json}')
        except Exception as e:
            print_error(f'Ошибка при сохранении JSON: {e}')

    if html_output:
        try:
            saved_html = render_html(report, template_dir, html_output)
            click.echo(f'HTML report: {saved_html}')
        except Exception as e:
            print_error(f'Ошибка при сохранении HTML: {e}')


@cli.command('config', context_settings=CONTEXT_SETTINGS)
@click.pass_context
def show_config(ctx):
    """Показать текущую конфигурацию в JSON."""
    cfg = ctx.obj['config']
    click.echo(cfg.model_dump_json(indent=2))


@cli.command('history', context_settings=CONTEXT_SETTINGS)
@click.argument('url')
@click.option('--limit', '-l', type=int, default=None, help='Сколько последних отчётов показать')
@click.pass_context
def history(ctx, url, limit):
    """Показать сохранённые отчёты сайта (новые первыми)."""
    cfg = ctx.obj['config']
    outcome = validate_url(url)
    if not outcome.valid:
        print_error(f'{url}: {outcome.reason.message}')
    store = _open_store(cfg)
    reports = store.reports_for(outcome.url, limit=limit)
    click.echo(json.dumps(
        [r.model_dump(mode='json') for r in reports],
        ensure_ascii=False, indent=2,
    ))


@cli.command('sites', context_settings=CONTEXT_SETTINGS)
@click.option('--monitored', is_flag=True, help='Только сайты с включённым мониторингом')
@click.pass_context
def sites(ctx, monitored):
    """Список сайтов (новые первыми) с мониторингом и последним отчётом."""
    cfg = ctx.obj['config']
    store = _open_store(cfg)
    items = []
    for site in sorted(store.list_sites(monitored_only=monitored), key=lambda s: s.created_at, reverse=True):
        last = store.latest_report(site)
        items.append({
            **site.model_dump(mode='json'),
            'last_report': last.model_dump(mode='json') if last else None,
        })
    click.echo(json.dumps(items, ensure_ascii=False, indent=2))


@cli.command('report', context_settings=CONTEXT_SETTINGS)
@click.argument('report_id')
@click.option('--raw', is_flag=True, help='Добавить сырой JSON Lighthouse')
@click.pass_context
def show_report(ctx, report_id, raw):
    """Показать один сохранённый отчёт по его id."""
    cfg = ctx.obj['config']
    store = _open_store(cfg)
    report = store.get_report(report_id)
    if report is None:
        print_error(f'Отчёт не найден: {report_id}')
    site = store.get_site_by_id(report.site_id)
    data = {
        'report': {
            **report.model_dump(mode='json'),
            'site': {'id': report.site_id, 'url': site.url if site else None},
        },
    }
    if raw:
        data['raw_data'] = store.load_raw(report.id)
    click.echo(json.dumps(data, ensure_ascii=False, indent=2))


@cli.command('watch', context_settings=CONTEXT_SETTINGS)
@click.argument('url')
@click.option(
    '--frequency', 'frequency',
    type=click.Choice([f.value for f in MonitorFrequency]),
    default=MonitorFrequency.DAILY.value, show_default=True,
    help='Как часто проверять сайт'
)
@click.option('--disable', is_flag=True, help='Выключить мониторинг')
@click.pass_context
def watch(ctx, url, frequency, disable):
    """Включить или выключить мониторинг сайта."""
    cfg = ctx.obj['config']
    outcome = validate_url(url)
    if not outcome.valid:
        print_error(f'{url}: {outcome.reason.message}')
    store = _open_store(cfg)
    site = store.set_monitoring(outcome.url, enabled=not disable, frequency=frequency)
    state = 'off' if disable else f'every {site.monitoring_frequency}'
    click.echo(f'Monitoring {site.url}: {state}')


@cli.command('monitor', context_settings=CONTEXT_SETTINGS)
@click.option('--device', '-d', 'device', type=DEVICES, default='mobile', show_default=True)
@click.pass_context
def monitor(ctx, device):
    """Проверить все сайты, для которых подошло время мониторинга."""
    cfg = ctx.obj['config']
    store = _open_store(cfg)
    try:
        results = asyncio.run(monitor_once(cfg, store, device))
    except Exception as e:
        print_error(f'Ошибка мониторинга: {e}')
    failed = [r for r in results if not r.ok]
    click.echo(f'Audited {len(results)} site(s), {len(failed)} failed')
    for r in failed:
        click.secho(f'  {r.url}: {r.error}', fg='yellow')


if __name__ == "__main__":
    cli()
