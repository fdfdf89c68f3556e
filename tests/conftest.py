# tests/conftest.py
from types import SimpleNamespace

import pytest

from catalog_sync.domain.services.applier_svc import ProjectionApplier
from catalog_sync.domain.services.assembler_svc import DocumentAssembler
from catalog_sync.domain.services.coordinator_svc import PipelineCoordinator, PipelineOptions
from catalog_sync.domain.services.currency_svc import CurrencyTable

from fakes import (
    STREAMS, FakeCatalogSource, FakeChangeStream, FakeCheckpoints, FakeDeadLetters, FakeIndex, FakePositions,
    make_matrix,
)


@pytest.fixture
def currency_table() -> CurrencyTable:
    table = CurrencyTable()
    table.load(make_matrix())
    return table


@pytest.fixture
def source() -> FakeCatalogSource:
    return FakeCatalogSource()


@pytest.fixture
def index() -> FakeIndex:
    return FakeIndex()


@pytest.fixture
def positions() -> FakePositions:
    return FakePositions()


@pytest.fixture
def assembler(source, currency_table) -> DocumentAssembler:
    return DocumentAssembler(source, currency_table, canonical_currency="USD")


@pytest.fixture
def applier(index, positions) -> ProjectionApplier:
    return ProjectionApplier(index, positions)


@pytest.fixture
def make_pipeline(source, index, positions, currency_table):
    """Build a coordinator over in-memory fakes; keyword overrides go to PipelineOptions."""

    def _make(checkpoints=None, **options):
        opts = dict(batch_size=10, block_ms=5, max_retries=3, backoff_base_s=0.001,
                    backoff_cap_s=0.005, max_in_flight=50)
        opts.update(options)
        stream = FakeChangeStream(STREAMS)
        checkpoints = checkpoints or FakeCheckpoints()
        dead_letters = FakeDeadLetters()
        coordinator = PipelineCoordinator(
            source=stream,
            checkpoints=checkpoints,
            assembler=DocumentAssembler(source, currency_table),
            applier=ProjectionApplier(index, positions),
            dead_letters=dead_letters,
            options=PipelineOptions(**opts),
        )
        return SimpleNamespace(
            stream=stream, checkpoints=checkpoints, dead_letters=dead_letters, coordinator=coordinator,
            source=source, index=index, positions=positions,
        )

    return _make
