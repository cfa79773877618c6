from dataclasses import dataclass


@dataclass(frozen=True)
class ProgressReport:
    processed_units: int
    total_units: int | None
    percent: int | None
    rate: float | None


def percent_complete(processed: int, total: int) -> int:
    if total <= 0:
        return 0
    return max(0, min(100, round(processed / total * 100)))


def events_per_second(processed: int, elapsed_s: float) -> float:
    if elapsed_s <= 0:
        return 0.0
    return round(processed / elapsed_s, 2)


class ProgressReporter:
    """Derives the normalized progress signal shown to the UI.

    Bounded jobs (image, video) report a percentage; unbounded jobs (realtime)
    report only a throughput rate in events per second.
    """

    def report(self, processed: int, total: int | None, elapsed_s: float = 0.0) -> ProgressReport:
        processed = max(0, int(processed))
        if total is None:
            return ProgressReport(
                processed_units=processed,
                total_units=None,
                percent=None,
                rate=events_per_second(processed, elapsed_s),
            )
        return ProgressReport(
            processed_units=processed,
            total_units=int(total),
            percent=percent_complete(processed, int(total)),
            rate=None,
        )
