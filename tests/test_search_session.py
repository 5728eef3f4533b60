from __future__ import annotations

from engine.errors import ConfigError, UpstreamError
from engine.search_session import SearchSession
from metadata.types import CanonicalItem, Category, MediaType, SearchResult, SortOption


class _FakeTimer:
    created = []

    def __init__(self, interval, function, args=()):
        self.interval = interval
        self.function = function
        self.args = args
        self.cancelled = False
        self.started = False
        self.daemon = False
        _FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function(*self.args)


def _item(external_id, rating=None):
    return CanonicalItem(
        id=f"fake:{external_id}",
        external_id=external_id,
        type=MediaType.GAME,
        title=external_id,
        provider_id="fake",
        rating=rating,
    )


class _FakeService:
    def __init__(self, result=None, error=None):
        self.result = result or SearchResult(
            items=(_item("low", 1.0), _item("high", 9.0)),
            page=1,
            total_pages=2,
            total_count=4,
        )
        self.error = error
        self.searches = []
        self.prefetches = []
        self.before_return = None

    def search(self, category, media_type, query, provider_id=None):
        self.searches.append((category, media_type, query, provider_id))
        if self.before_return is not None:
            self.before_return()
        if self.error is not None:
            raise self.error
        return self.result

    def prefetch(self, category, media_type, query, provider_id=None):
        self.prefetches.append(query)


def _session(service, **kwargs):
    _FakeTimer.created = []
    delivered = []
    errors = []
    session = SearchSession(
        service,
        category=Category.GAME,
        media_type=MediaType.GAME,
        on_results=lambda result, generation: delivered.append((result, generation)),
        on_error=lambda kind, exc, generation: errors.append((kind, generation)),
        timer_factory=_FakeTimer,
        **kwargs,
    )
    return session, delivered, errors


def test_keystrokes_collapse_into_one_search() -> None:
    service = _FakeService()
    session, delivered, _errors = _session(service)

    session.update(free_text="z")
    session.update(free_text="ze")
    session.update(free_text="zel")

    first, second, third = _FakeTimer.created
    assert first.cancelled and second.cancelled and not third.cancelled
    assert third.interval == 0.3
    first.fire()
    second.fire()
    assert service.searches == []

    third.fire()
    assert len(service.searches) == 1
    assert service.searches[0][2].free_text == "zel"
    assert delivered[0][1] == 3


def test_search_now_flushes_and_cancels_pending_timer() -> None:
    service = _FakeService()
    session, delivered, _errors = _session(service)

    session.update(free_text="zelda")
    result = session.search_now()

    assert _FakeTimer.created[0].cancelled
    assert result is delivered[0][0]
    assert len(service.searches) == 1


def test_client_side_sort_when_provider_did_not_sort() -> None:
    service = _FakeService()
    session, delivered, _errors = _session(service)

    session.update(free_text="zelda", sort=SortOption.RATING_DESC)
    session.search_now()

    assert [item.external_id for item in delivered[0][0].items] == ["high", "low"]


def test_server_sorted_results_keep_upstream_order() -> None:
    result = SearchResult(items=(_item("low", 1.0), _item("high", 9.0)), page=1, total_pages=1, server_sorted=True)
    service = _FakeService(result=result)
    session, delivered, _errors = _session(service)

    session.update(sort=SortOption.RATING_DESC, free_text="zelda")
    session.search_now()

    assert [item.external_id for item in delivered[0][0].items] == ["low", "high"]
    assert service.prefetches == []


def test_next_page_is_prefetched_when_more_pages_remain() -> None:
    service = _FakeService()
    session, _delivered, _errors = _session(service)

    session.update(free_text="zelda")
    session.search_now()

    assert [query.page for query in service.prefetches] == [2]
    assert service.prefetches[0].free_text == "zelda"


def test_superseded_results_are_discarded() -> None:
    service = _FakeService()
    session, delivered, _errors = _session(service)
    session.update(free_text="zelda")
    service.before_return = lambda: session.update(free_text="mario")

    assert session.search_now() is None
    assert delivered == []
    assert service.prefetches == []


def test_errors_are_classified_for_the_banner() -> None:
    service = _FakeService(error=UpstreamError(429, "slow down"))
    session, delivered, errors = _session(service)

    session.update(free_text="zelda")
    session.search_now()
    service.error = ConfigError("missing")
    session.search_now()

    assert delivered == []
    assert [kind for kind, _generation in errors] == ["rate_limited", "config"]


def test_input_change_resets_page() -> None:
    service = _FakeService()
    session, _delivered, _errors = _session(service)

    session.update(free_text="zelda", page=3)
    assert session.query.page == 3
    session.update(free_text="mario")
    assert session.query.page == 1
