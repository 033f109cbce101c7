from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

import fieldsurvey.models  # noqa: F401  (registers models with Base.metadata)
from fieldsurvey.core.database import Base, build_engine
from fieldsurvey.services.form_configs import FormConfigRegistry, load_form_config
from fieldsurvey.services.form_state import FormState
from fieldsurvey.services.local_store import LocalStore

FORMS_DIR = Path(__file__).resolve().parent.parent / "forms"

# In-memory SQLite shared by every session in a test
TEST_DATABASE_URL = "sqlite://"

engine = build_engine(TEST_DATABASE_URL)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class SteppingClock:
    """Deterministic clock: every call is one second after the previous one."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 5, 1, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture(autouse=True)
def setup_db():
    """Create all tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    """Provide a test database session."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def store(clock) -> LocalStore:
    return LocalStore(TestSessionLocal, clock=clock)


@pytest.fixture
def state() -> FormState:
    return FormState()


@pytest.fixture
def building_config():
    """The bundled building survey form."""
    return load_form_config(FORMS_DIR / "building-survey.json")


@pytest.fixture
def registry() -> FormConfigRegistry:
    configs = FormConfigRegistry(FORMS_DIR)
    configs.load()
    return configs


@pytest.fixture
def session_factory() -> sessionmaker:
    return TestSessionLocal
