import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import database
from config import Settings
from database import Base
from fusion.models import TrainingResult
from main import app
from services.fusion import build_fusion_services
from services.performance_store import SqlPerformanceStore, SqlTrainingDataStore


class StubTrainer:
    name = "stub"

    def __init__(self):
        self.calls = []

    async def incremental_train(self, examples, options):
        self.calls.append((list(examples), dict(options)))
        return TrainingResult(accuracy=0.88, loss=0.2)


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    db_path = tmp_path / "tab_fusion.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def api_settings():
    return Settings(_env_file=None, TRAINING_MIN_EXAMPLES_PER_CLASS=2)


@pytest.fixture
def stub_trainer():
    return StubTrainer()


@pytest_asyncio.fixture
async def fusion_services(session_maker, api_settings, stub_trainer):
    fusion = build_fusion_services(
        api_settings,
        performance_store=SqlPerformanceStore(session_maker),
        training_store=SqlTrainingDataStore(session_maker),
        trainer=stub_trainer,
    )
    await fusion.tracker.load()
    yield fusion
    await fusion.feedback.wait_for_training()


@pytest_asyncio.fixture
async def fusion_client(fusion_services, test_engine, monkeypatch):
    monkeypatch.setattr(database, "engine", test_engine)
    previous = getattr(app.state, "fusion", None)
    app.state.fusion = fusion_services
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.state.fusion = previous
