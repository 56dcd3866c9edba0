import json
from types import SimpleNamespace

import psutil

from ctxware.monitor import Stats, new, update_statistics
from ctxware.monitorpage import Config
from ctxware.web import App, make_request


class FakeProcess:
    pid = 4242

    def cpu_percent(self, interval=None):
        return 50.0

    def memory_info(self):
        return SimpleNamespace(rss=1234)

    def net_connections(self, kind="inet"):
        return [object(), object(), object()]


class BrokenProcess:
    pid = 4243

    def cpu_percent(self, interval=None):
        raise psutil.NoSuchProcess(self.pid)

    def memory_info(self):
        raise psutil.NoSuchProcess(self.pid)

    def net_connections(self, kind="inet"):
        raise psutil.AccessDenied(self.pid)


def test_stats_to_dict_shape():
    stats = Stats(pid_cpu=1.5, pid_ram=10, pid_conns=2, os_cpu=3.0, os_ram=20, os_total_ram=40, os_load_avg=0.5, os_conns=7)
    assert stats.to_dict() == {
        "pid": {"cpu": 1.5, "ram": 10, "conns": 2},
        "os": {"cpu": 3.0, "ram": 20, "total_ram": 40, "load_avg": 0.5, "conns": 7},
    }


def test_update_statistics_reads_process():
    stats = update_statistics(FakeProcess(), 2)
    assert stats.pid_cpu == 25.0
    assert stats.pid_ram == 1234
    assert stats.pid_conns == 3


def test_update_statistics_survives_process_errors():
    stats = update_statistics(BrokenProcess(), 1)
    assert stats.os_total_ram > 0
    assert 0 <= stats.os_ram <= stats.os_total_ram


def test_monitor_405():
    app = App()
    app.use("/", new())
    resp = app.test(make_request("POST", "/"))
    assert resp.status_code == 405


def test_monitor_html():
    app = App()
    app.get("/", new())
    resp = app.test(make_request("GET", "/"))
    assert resp.status_code == 200
    assert resp.header("Content-Type") == "text/html; charset=utf-8"
    assert "<title>Fiber Monitor</title>" in resp.text
    assert "setTimeout(fetchJSON, 2800)" in resp.text

    app.get("/custom", new(Config(title="New Fiber Monitor", refresh=4.0)))
    resp = app.test(make_request("GET", "/custom"))
    assert resp.status_code == 200
    assert resp.header("Content-Type") == "text/html; charset=utf-8"
    assert "<title>New Fiber Monitor</title>" in resp.text
    assert "setTimeout(fetchJSON, 3800)" in resp.text


def test_monitor_html_custom_codes():
    conf = Config(
        title="New Fiber Monitor",
        refresh=4.0,
        chart_js_url="https://cdnjs.com/libraries/Chart.js",
        font_url="/public/my-font.css",
        custom_head="<style>body{background:#fff}</style>",
    )
    app = App()
    app.get("/custom", new(conf))
    resp = app.test(make_request("GET", "/custom"))
    assert resp.status_code == 200
    assert resp.header("Content-Type") == "text/html; charset=utf-8"
    body = resp.text
    assert "<title>New Fiber Monitor</title>" in body
    assert "https://cdnjs.com/libraries/Chart.js" in body
    assert "/public/my-font.css" in body
    assert "<style>body{background:#fff}</style>" in body
    assert "setTimeout(fetchJSON, 3800)" in body


def test_monitor_json():
    app = App()
    app.get("/", new())
    resp = app.test(make_request("GET", "/", headers={"Accept": "application/json"}))
    assert resp.status_code == 200
    assert resp.header("Content-Type") == "application/json"
    data = json.loads(resp.body)
    assert set(data) == {"pid", "os"}
    assert set(data["os"]) == {"cpu", "ram", "total_ram", "load_avg", "conns"}
    assert set(data["pid"]) == {"cpu", "ram", "conns"}


def test_monitor_next():
    app = App()
    app.use("/", new(Config(next=lambda ctx: True)))
    resp = app.test(make_request("POST", "/"))
    assert resp.status_code == 404


def test_monitor_api_only():
    app = App()
    app.get("/", new(Config(api_only=True)))
    resp = app.test(make_request("GET", "/", headers={"Accept": "application/json"}))
    assert resp.status_code == 200
    assert resp.header("Content-Type") == "application/json"
    assert b"pid" in resp.body
    assert b"os" in resp.body


def test_monitor_api_only_without_accept_header():
    app = App()
    app.get("/", new(Config(api_only=True)))
    resp = app.test(make_request("GET", "/"))
    assert resp.status_code == 200
    assert resp.header("Content-Type") == "application/json"
    assert "pid" in json.loads(resp.body)