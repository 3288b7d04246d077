from datetime import date

from cafe.services.reports import ReportRenderer


def test_report_for_a_quiet_week(statistics):
    html = ReportRenderer(statistics, currency="VND").generate_html()
    assert "<h1>Cafe Report</h1>" in html
    assert "Period: 2024-04-25 to 2024-05-01" in html
    assert "No sessions in this period." in html
    assert "0.00 VND" in html


def test_report_lists_usage(statistics, engine, alice, pc, clock):
    session = engine.start_session(alice.id, pc.id)
    clock.advance(minutes=30)
    engine.end_session(session.id)

    html = ReportRenderer(statistics, currency="VND").generate_html(
        date(2024, 5, 1), date(2024, 5, 1)
    )

    assert "<td>alice</td>" in html
    assert "5,000.00 VND" in html
    assert "<td>10:00</td>" in html
    assert "30 minutes" in html
