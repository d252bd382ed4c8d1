from __future__ import annotations

import pytest

from subporter.config import ExtractionConfig
from subporter.engine.events import ExtractComplete, ExtractProgress, ScrollProgress
from subporter.engine.extraction import ExtractionEngine, ExtractionPhase, record_from_unit
from subporter.engine.surface import ListingUnit, SurfaceState
from subporter.errors import ExtractionError

GROWING_TO_47 = [(10, 1000), (20, 2000), (30, 3000), (40, 4000), (47, 4700)]


class CollectingSink:
    def __init__(self) -> None:
        self.events = []

    def publish(self, event) -> None:
        self.events.append(event)


def test_stops_after_three_stable_polls_and_reports_47(listing_surface, recording_sleep) -> None:
    surface = listing_surface(GROWING_TO_47 + [(47, 4700)] * 10, units=47)
    sink = CollectingSink()
    engine = ExtractionEngine(surface, progress=sink, sleep=recording_sleep)

    report = engine.run()

    # five growing polls, then three unchanged ones
    assert surface.scrolls == 8
    assert report.scroll_attempts == 8
    assert report.discovered == 47
    assert report.count == 47
    assert engine.phase is ExtractionPhase.DONE
    scroll_events = [e for e in sink.events if isinstance(e, ScrollProgress)]
    assert [e.attempt for e in scroll_events] == list(range(1, 9))
    assert scroll_events[-1].current_count == 47
    assert all(e.max_attempts == 100 for e in scroll_events)


def test_scrolling_is_capped_by_max_attempts(listing_surface, recording_sleep) -> None:
    growing = [(i, i * 100) for i in range(1, 50)]
    surface = listing_surface(growing, units=3)
    engine = ExtractionEngine(
        surface, ExtractionConfig(max_scroll_attempts=5), sleep=recording_sleep
    )
    report = engine.run()
    assert surface.scrolls == 5
    assert report.scroll_attempts == 5


def test_settle_delay_follows_each_scroll(listing_surface, recording_sleep, timeline) -> None:
    surface = listing_surface([(5, 500)], units=5)
    ExtractionEngine(
        surface, ExtractionConfig(scroll_settle_delay=0.25), sleep=recording_sleep
    ).run()
    assert timeline.sleeps() == [0.25] * surface.scrolls
    assert timeline[0] == ("scroll", 1)
    assert timeline[1] == ("sleep", 0.25)


def test_progress_every_ten_units_and_single_completion(listing_surface, recording_sleep) -> None:
    surface = listing_surface([(47, 4700)], units=47)
    sink = CollectingSink()
    ExtractionEngine(surface, progress=sink, sleep=recording_sleep).run()

    extract_events = [e for e in sink.events if isinstance(e, ExtractProgress)]
    assert [e.current for e in extract_events] == [10, 20, 30, 40]
    completions = [e for e in sink.events if isinstance(e, ExtractComplete)]
    assert len(completions) == 1
    assert completions[0].total == 47


def test_units_without_name_or_url_are_dropped(listing_surface, recording_sleep) -> None:
    units = [
        ListingUnit(href="/@kept", name="Kept"),
        ListingUnit(href=None, name="No link"),
        ListingUnit(href="/@nameless", name="   "),
        ListingUnit(href="/channel/UC" + "b" * 22, name="Canonical", count_text="1.2M subscribers"),
    ]
    surface = listing_surface([(4, 400)], units=units)
    report = ExtractionEngine(surface, sleep=recording_sleep).run()

    assert [r.display_name for r in report.records] == ["Kept", "Canonical"]
    assert report.dropped == 2
    assert report.records[0].identifier == "@kept"
    assert report.records[1].identifier == "UC" + "b" * 22
    assert report.records[1].target_url == "https://www.youtube.com/channel/UC" + "b" * 22


def test_failing_listener_does_not_break_extraction(listing_surface, recording_sleep) -> None:
    class BrokenSink:
        def publish(self, event) -> None:
            raise RuntimeError("listener gone")

    surface = listing_surface([(3, 300)], units=3)
    report = ExtractionEngine(surface, progress=BrokenSink(), sleep=recording_sleep).run()
    assert report.count == 3


def test_surface_failure_aborts_whole_pass(listing_surface, recording_sleep) -> None:
    surface = listing_surface(GROWING_TO_47, units=47)
    surface.fail_on_scroll = 3
    engine = ExtractionEngine(surface, sleep=recording_sleep)
    with pytest.raises(ExtractionError, match="page crashed"):
        engine.run()
    assert engine.phase is ExtractionPhase.DONE


def test_listing_url_requires_signed_in_session(listing_surface, recording_sleep, timeline) -> None:
    surface = listing_surface([(3, 300)], units=3, account=SurfaceState.ABSENT)
    with pytest.raises(ExtractionError, match="Not signed in"):
        ExtractionEngine(surface, sleep=recording_sleep).run("https://www.youtube.com/feed/channels")
    assert timeline.navigations() == ["https://www.youtube.com/feed/channels"]
    assert surface.scrolls == 0


def test_engine_runs_once(listing_surface, recording_sleep) -> None:
    engine = ExtractionEngine(listing_surface([(1, 100)], units=1), sleep=recording_sleep)
    engine.run()
    with pytest.raises(ExtractionError):
        engine.run()


def test_record_from_unit_joins_relative_urls() -> None:
    record = record_from_unit(
        ListingUnit(href="/@maker", name=" Maker ", thumbnail="", count_text="10K"),
        "https://www.youtube.com/",
    )
    assert record is not None
    assert record.target_url == "https://www.youtube.com/@maker"
    assert record.display_name == "Maker"
    assert record.thumbnail_url is None
    absolute = record_from_unit(
        ListingUnit(href="https://m.youtube.com/@other", name="Other"), "https://www.youtube.com"
    )
    assert absolute is not None and absolute.target_url == "https://m.youtube.com/@other"
