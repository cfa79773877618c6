from vision_dashboard.core.progress import ProgressReporter


def test_bounded_progress_reports_rounded_percent():
    report = ProgressReporter().report(processed=150, total=450)

    assert report.percent == 33
    assert report.rate is None
    assert report.total_units == 450


def test_bounded_progress_clamps_and_tolerates_zero_total():
    reporter = ProgressReporter()

    assert reporter.report(processed=500, total=450).percent == 100
    assert reporter.report(processed=0, total=0).percent == 0
    assert reporter.report(processed=3, total=0).percent == 0


def test_unbounded_progress_reports_rate_only():
    reporter = ProgressReporter()

    report = reporter.report(processed=30, total=None, elapsed_s=12.0)

    assert report.percent is None
    assert report.rate == 2.5
    assert reporter.report(processed=5, total=None, elapsed_s=0.0).rate == 0.0
