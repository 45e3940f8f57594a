import pytest
from sync_helpers import StubFetcher, csv_bytes, product_rows

from catalog_app.models import SourceConfig, db
from catalog_app.sync.fetcher import FetchError
from catalog_app.sync.orchestrator import SyncOrchestrator


@pytest.fixture
def make_source(app):
    """Factory creating committed source configurations."""

    def _make_source(**overrides) -> SourceConfig:
        values = {
            "jurisdiction": "MI",
            "data_source": "state_website",
            "source_type": "url",
            "fetch_location": "https://example.test/apl.csv",
            "file_format": "csv",
            "min_expected_records": 1,
            "max_change_rate": 0.10,
            "enabled": True,
        }
        values.update(overrides)
        source = SourceConfig(**values)
        db.session.add(source)
        db.session.commit()
        return source

    return _make_source


@pytest.fixture
def source(make_source):
    return make_source()


@pytest.fixture
def stub_fetcher():
    return StubFetcher(csv_bytes(product_rows(5)))


@pytest.fixture
def orchestrator(app, stub_fetcher):
    return SyncOrchestrator(fetcher=stub_fetcher)


@pytest.fixture
def fetch_failure():
    return FetchError("Fetching https://example.test/apl.csv returned HTTP 503", details={"status_code": 503})
