from microkit.stats_template import ASSET_ROOT, render_stats_page


def test_page_has_title():
    page = render_stats_page()
    assert "<title>Micro Stats</title>" in page


def test_content_block_is_filled():
    page = render_stats_page()
    assert 'id="chart"' in page
    assert page.index('id="chart"') < page.index("</body>")


def test_script_block_is_filled():
    page = render_stats_page()
    assert "function loadStats()" in page
    assert "loadChart(data.counters);" in page


def test_no_template_syntax_left():
    page = render_stats_page()
    assert "{%" not in page
    assert "{{" not in page


def test_assets_point_at_asset_root():
    page = render_stats_page()
    assert f'src="{ASSET_ROOT}/jquery.min.js"' in page


def test_info_and_request_cells_present():
    page = render_stats_page()
    for css in ("started", "uptime", "memory", "threads", "gc", "total", "20x", "40x", "50x"):
        assert f'<td class="{css}"></td>' in page


def test_script_tags_counted():
    page = render_stats_page()
    assert page.count("<script") == 4
    assert page.rstrip().endswith("</html>")