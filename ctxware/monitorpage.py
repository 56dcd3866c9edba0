"""Settings and the HTML page of the metrics monitor."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Callable, Optional

from ctxware.web import Ctx

DEFAULT_TITLE = "Fiber Monitor"
DEFAULT_REFRESH = 3.0
TIMEOUT_DIFF = 200  # the page polls every refresh (in milliseconds) minus this
MIN_REFRESH = TIMEOUT_DIFF / 1000
DEFAULT_FONT_URL = "https://fonts.googleapis.com/css2?family=Roboto:wght@400;900&display=swap"
DEFAULT_CHART_JS_URL = "https://cdn.jsdelivr.net/npm/chart.js@2.9/dist/Chart.bundle.min.js"
DEFAULT_CUSTOM_HEAD = ""

_STYLE_RULES = (
    ("body", "margin: 0; font: 16px / 1.6 'Roboto', sans-serif;"),
    (".wrapper", "max-width: 900px; margin: 0 auto; padding: 30px 0;"),
    (".title", "text-align: center; margin-bottom: 2em;"),
    (".title h1", "font-size: 1.8em; padding: 0; margin: 0;"),
    (".row", "display: flex; margin-bottom: 20px; align-items: center;"),
    (".row .column:first-child", "width: 35%;"),
    (".row .column:last-child", "width: 65%;"),
    (".metric", "color: #777; font-weight: 900;"),
    ("h2", "padding: 0; margin: 0; font-size: 2.2em;"),
    ("h2 span", "font-size: 12px; color: #777;"),
    ("h2 span.ram_os", "color: rgba(255, 150, 0, .8);"),
    ("h2 span.ram_total", "color: rgba(0, 200, 0, .8);"),
    ("canvas", "width: 200px; height: 180px;"),
)

# (caption, element id prefix, initial reading, tooltip)
_PANELS = (
    ("CPU Usage", "cpu", "0.00%", ""),
    ("Memory Usage", "ram", "0.00 MB", "PID used / OS used / OS total"),
    ("Response Time", "rtime", "0ms", ""),
    ("Open Connections", "conns", "0", ""),
)

_SCRIPT = """
function formatBytes(value) {
  if (value === 0) return '0 Bytes';
  var units = ['Bytes', 'KB', 'MB', 'GB', 'TB', 'PB', 'EB', 'ZB', 'YB'];
  var exp = Math.floor(Math.log(value) / Math.log(1024));
  return parseFloat((value / Math.pow(1024, exp)).toFixed(1)) + ' ' + units[exp];
}
var globals = Chart.defaults.global;
globals.legend.display = false;
globals.defaultFontSize = 8;
globals.animation.duration = 1000;
globals.animation.easing = 'easeOutQuart';
globals.elements.line.backgroundColor = 'rgba(0, 172, 215, 0.25)';
globals.elements.line.borderColor = 'rgba(0, 172, 215, 1)';
globals.elements.line.borderWidth = 2;
var chartOptions = {
  scales: {
    yAxes: [{ticks: {beginAtZero: true}}],
    xAxes: [{type: 'time', time: {unitStepSize: 30, unit: 'second'}, gridlines: {display: false}}]
  },
  tooltips: {enabled: false},
  responsive: true,
  maintainAspectRatio: false,
  animation: false
};
function series(extra) {
  return Object.assign({data: [], lineTension: 0.2, pointRadius: 0}, extra || {});
}
function chartFor(name, datasets) {
  var canvas = document.getElementById(name + 'Chart').getContext('2d');
  return new Chart(canvas, {type: 'line', data: {labels: [], datasets: datasets}, options: chartOptions});
}
var charts = {
  cpu: chartFor('cpu', [series({label: ''})]),
  ram: chartFor('ram', [
    series({label: ''}),
    series({backgroundColor: 'rgba(255, 200, 0, .6)', borderColor: 'rgba(255, 150, 0, .8)'}),
    series({backgroundColor: 'rgba(0, 255, 0, .4)', borderColor: 'rgba(0, 200, 0, .8)'})
  ]),
  rtime: chartFor('rtime', [series({label: ''})]),
  conns: chartFor('conns', [series({label: ''})])
};
function show(name, html) {
  document.getElementById(name + 'Metric').innerHTML = html;
}
function megabytes(value) {
  return (value / 1e6).toFixed(2);
}
function update(stats, rtime) {
  var cpu = stats.pid.cpu.toFixed(1);
  show('cpu', cpu + '% <span>' + stats.os.cpu.toFixed(1) + '%</span>');
  show('ram', formatBytes(stats.pid.ram) +
    '<span> / </span><span class="ram_os">' + formatBytes(stats.os.ram) +
    '</span><span> / </span><span class="ram_total">' + formatBytes(stats.os.total_ram) + '</span>');
  show('rtime', rtime + 'ms <span>client</span>');
  show('conns', stats.pid.conns + ' <span>' + stats.os.conns + '</span>');

  charts.cpu.data.datasets[0].data.push(cpu);
  charts.ram.data.datasets[0].data.push(megabytes(stats.pid.ram));
  charts.ram.data.datasets[1].data.push(megabytes(stats.os.ram));
  charts.ram.data.datasets[2].data.push(megabytes(stats.os.total_ram));
  charts.rtime.data.datasets[0].data.push(rtime);
  charts.conns.data.datasets[0].data.push(stats.pid.conns);

  var now = Date.now();
  Object.keys(charts).forEach(function (key) {
    var chart = charts[key];
    if (chart.data.labels.length > 50) {
      chart.data.datasets.forEach(function (set) { set.data.shift(); });
      chart.data.labels.shift();
    }
    chart.data.labels.push(now);
    chart.update();
  });
  setTimeout(fetchJSON, $TIMEOUT);
}
function fetchJSON() {
  var started = performance.now();
  var elapsed = 0;
  fetch(window.location.href, {headers: {'Accept': 'application/json'}, credentials: 'same-origin'})
    .then(function (res) {
      elapsed = Math.round(performance.now() - started);
      return res.json();
    })
    .then(function (stats) { update(stats, elapsed); })
    .catch(console.error);
}
fetchJSON();
"""


def _render_panel(caption: str, name: str, reading: str, tooltip: str) -> str:
    title_attr = f' title="{tooltip}"' if tooltip else ""
    return (
        '<div class="row">\n'
        f'<div class="column"><div class="metric">{caption}</div>'
        f'<h2 id="{name}Metric"{title_attr}>{reading}</h2></div>\n'
        f'<div class="column"><canvas id="{name}Chart"></canvas></div>\n'
        "</div>"
    )


def _build_template() -> str:
    style = "\n".join(f"{selector} {{ {rules} }}" for selector, rules in _STYLE_RULES)
    panels = "\n".join(_render_panel(*panel) for panel in _PANELS)
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n'
        "<head>\n"
        '<meta charset="UTF-8">\n'
        '<meta name="viewport" content="width=device-width, initial-scale=1.0">\n'
        '<link href="$FONT_URL" rel="stylesheet">\n'
        '<script src="$CHART_JS_URL"></script>\n'
        "<title>$TITLE</title>\n"
        f"<style>\n{style}\n$CUSTOM_HEAD\n</style>\n"
        "</head>\n"
        "<body>\n"
        '<section class="wrapper">\n'
        '<div class="title"><h1>$TITLE</h1></div>\n'
        f'<section class="charts">\n{panels}\n</section>\n'
        "</section>\n"
        f"<script>{_SCRIPT}</script>\n"
        "</body>\n"
        "</html>\n"
    )


INDEX_HTML = _build_template()

_PLACEHOLDERS = ("$TITLE", "$TIMEOUT", "$FONT_URL", "$CHART_JS_URL", "$CUSTOM_HEAD")
_PLACEHOLDER_PATTERN = re.compile("|".join(re.escape(name) for name in _PLACEHOLDERS))


@dataclass
class ViewBag:
    """The values substituted into the monitor page; ``refresh`` is in seconds."""

    title: str
    refresh: float
    font_url: str
    chart_js_url: str
    custom_head: str


def new_index(view: ViewBag) -> str:
    """Render the monitor page for the given values, in a single pass."""
    milliseconds = round(view.refresh * 1e9) // 1_000_000
    timeout = max(milliseconds - TIMEOUT_DIFF, TIMEOUT_DIFF)
    values = {
        "$TITLE": view.title,
        "$TIMEOUT": str(timeout),
        "$FONT_URL": view.font_url,
        "$CHART_JS_URL": view.chart_js_url,
        "$CUSTOM_HEAD": view.custom_head,
    }
    return _PLACEHOLDER_PATTERN.sub(lambda match: values[match.group(0)], INDEX_HTML)


@dataclass
class Config:
    """Settings of the monitor; empty values are filled by :func:`config_default`."""

    title: str = ""
    refresh: float = 0.0
    api_only: bool = False
    next: Optional[Callable[[Ctx], bool]] = None
    custom_head: str = ""
    font_url: str = ""
    chart_js_url: str = ""
    index: str = ""


CONFIG_DEFAULT = Config(
    title=DEFAULT_TITLE,
    refresh=DEFAULT_REFRESH,
    font_url=DEFAULT_FONT_URL,
    chart_js_url=DEFAULT_CHART_JS_URL,
    custom_head=DEFAULT_CUSTOM_HEAD,
    api_only=False,
    next=None,
    index=new_index(
        ViewBag(DEFAULT_TITLE, DEFAULT_REFRESH, DEFAULT_FONT_URL, DEFAULT_CHART_JS_URL, DEFAULT_CUSTOM_HEAD)
    ),
)


def config_default(config: Optional[Config] = None) -> Config:
    """Return a complete config, with its page rendered."""
    default = CONFIG_DEFAULT
    if (
        default.title != DEFAULT_TITLE
        or default.refresh != DEFAULT_REFRESH
        or default.font_url != DEFAULT_FONT_URL
        or default.chart_js_url != DEFAULT_CHART_JS_URL
        or default.custom_head != DEFAULT_CUSTOM_HEAD
    ):
        # The shared default was changed; keep its page in step with it.
        if default.refresh < MIN_REFRESH:
            default.refresh = MIN_REFRESH
        default.index = new_index(
            ViewBag(default.title, default.refresh, default.font_url, default.chart_js_url, default.custom_head)
        )

    if config is None:
        return replace(default)

    cfg = replace(config)
    if not cfg.title:
        cfg.title = default.title
    if not cfg.refresh:
        cfg.refresh = default.refresh
    if not cfg.font_url:
        cfg.font_url = DEFAULT_FONT_URL
    if not cfg.chart_js_url:
        cfg.chart_js_url = DEFAULT_CHART_JS_URL
    if cfg.refresh < MIN_REFRESH:
        cfg.refresh = MIN_REFRESH
    if cfg.next is None:
        cfg.next = default.next
    if not cfg.api_only:
        cfg.api_only = default.api_only
    cfg.index = new_index(ViewBag(cfg.title, cfg.refresh, cfg.font_url, cfg.chart_js_url, cfg.custom_head))
    return cfg