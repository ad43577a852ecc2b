"""HTML page showing request statistics collected by the stats middleware."""

from __future__ import annotations

import jinja2

ASSET_ROOT = "/static"

_INFO_ROWS = [
    ("Started", "started"),
    ("Uptime", "uptime"),
    ("Memory", "memory"),
    ("Threads", "threads"),
    ("GC", "gc"),
]

_REQUEST_ROWS = [
    ("Total", "total"),
    ("20x", "20x"),
    ("40x", "40x"),
    ("50x", "50x"),
]

_SCRIPTS = ["jquery.min.js", "bootstrap.min.js", "canvasjs.min.js"]

_LAYOUT = """<html>
<head>
  <title>Micro Stats</title>
  <link rel="stylesheet" href="{{ assets }}/bootstrap.min.css">
  <style>{% block style %}{% endblock %}</style>
</head>
<body>
  <nav class="navbar navbar-inverse">
    <div class="container">
      <div class="navbar-header"><a class="navbar-brand" href="/">Micro</a></div>
    </div>
  </nav>
  <div class="container">
    <div class="row">
      <span class="pull-right update h6"></span>
      <div class="col-sm-4">
        <h4>&nbsp;</h4>
{%- for caption, rows in tables %}
        <table class="table table-bordered">
          <caption>{{ caption }}</caption>
          <tbody>
{%- for label, css in rows %}
            <tr><th>{{ label }}</th><td class="{{ css }}"></td></tr>
{%- endfor %}
          </tbody>
        </table>
{%- endfor %}
      </div>
      <div class="col-sm-8">
        {% block content %}{% endblock %}
      </div>
    </div>
  </div>
{%- for script in scripts %}
  <script src="{{ assets }}/{{ script }}"></script>
{%- endfor %}
  {% block script %}{% endblock %}
</body>
</html>
"""

_STATS = """{% extends "layout" %}
{% block content %}<div id="chart" style="height: 300px; width: 100%;"></div>{% endblock %}
{% block script %}
<script>
var SERIES = ["20x", "40x", "50x"];

function statusCount(counter, code) {
  var value = counter.status_codes[code];
  return value === undefined ? 0 : value;
}

function pad(n) {
  return n < 10 ? "0" + n : String(n);
}

function formatUptime(seconds) {
  if (seconds <= 3600) {
    return seconds + "s";
  }
  var h = Math.floor(seconds / 3600);
  var m = Math.floor((seconds - h * 3600) / 60);
  var s = Math.floor(seconds - h * 3600 - m * 60);
  return pad(h) + ":" + pad(m) + ":" + pad(s);
}

function loadChart(counters) {
  var series = SERIES.map(function(code) {
    return {type: "line", xValueType: "dateTime", showInLegend: true, name: code, dataPoints: []};
  });
  var chart = new CanvasJS.Chart("chart", {
    zoomEnabled: true,
    title: {text: "Request Load"},
    toolTip: {shared: true},
    axisX: {title: "updates every 5 secs"},
    axisY: {includeZero: false},
    data: series,
    legend: {
      cursor: "pointer",
      itemclick: function(e) {
        var shown = typeof e.dataSeries.visible === "undefined" || e.dataSeries.visible;
        e.dataSeries.visible = !shown;
        chart.render();
      }
    }
  });
  var latest = SERIES.map(function() { return 0; });
  counters.forEach(function(counter) {
    var x = (counter.timestamp + 5) * 1000;
    SERIES.forEach(function(code, i) {
      latest[i] = statusCount(counter, code);
      series[i].dataPoints.push({x: x, y: latest[i]});
    });
  });
  SERIES.forEach(function(code, i) {
    series[i].legendText = " " + code + "  " + latest[i];
  });
  chart.render();
}

function showStats(data) {
  var started = new Date(data.started * 1000);
  var uptime = (new Date() - started) / 1000;
  $(".update").text("Last updated " + (new Date()).toUTCString());
  $(".started").text(started.toUTCString());
  $(".uptime").text(formatUptime(uptime));
  $(".memory").text(data.memory);
  $(".threads").text(data.threads);
  $(".gc").text(data.gc_pause);

  var total = 0;
  var sums = {};
  SERIES.forEach(function(code) { sums[code] = 0; });
  data.counters.forEach(function(counter) {
    total += counter.total_reqs;
    SERIES.forEach(function(code) { sums[code] += statusCount(counter, code); });
  });
  $(".total").text(total);
  SERIES.forEach(function(code) { $("." + code).text(sums[code]); });
  loadChart(data.counters);
}

function loadStats() {
  var req = new XMLHttpRequest();
  req.onreadystatechange = function() {
    if (req.readyState == 4 && req.status == 200) {
      showStats(JSON.parse(req.responseText));
    }
  };
  req.open("GET", window.location.href, true);
  req.setRequestHeader("Content-type", "application/json");
  req.send(JSON.stringify({}));
  setTimeout(loadStats, 5000);
}

loadStats();
</script>
{% endblock %}
"""

_environment = jinja2.Environment(
    loader=jinja2.DictLoader({"layout": _LAYOUT, "stats": _STATS}),
    autoescape=True,
    keep_trailing_newline=True,
    undefined=jinja2.StrictUndefined,
)


def render_stats_page() -> str:
    """Render the stats dashboard page."""
    return _environment.get_template("stats").render(
        assets=ASSET_ROOT,
        tables=[("Info", _INFO_ROWS), ("Requests", _REQUEST_ROWS)],
        scripts=_SCRIPTS,
    )