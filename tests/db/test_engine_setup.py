"""
Engine initialization and transaction scope (approval_kernel.db.engine).
"""

import pytest
from sqlalchemy import func, select

from approval_kernel.db.engine import (
    DATABASE_URL_ENV,
    create_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
    session_scope,
)
from approval_kernel.models.comment import CommentModel


@pytest.fixture
def module_engine(tmp_path, monkeypatch):
    reset_engine()
    monkeypatch.setenv(DATABASE_URL_ENV, f"sqlite:///{tmp_path / 'module.db'}")
    engine = init_engine_from_url()
    create_tables(engine)
    yield engine
    reset_engine()


class TestInitialization:
    def test_uninitialized_raises(self):
        reset_engine()
        with pytest.raises(RuntimeError):
            get_engine()
        with pytest.raises(RuntimeError):
            get_session_factory()

    def test_missing_url_raises(self, monkeypatch):
        reset_engine()
        monkeypatch.delenv(DATABASE_URL_ENV, raising=False)
        with pytest.raises(RuntimeError, match=DATABASE_URL_ENV):
            init_engine_from_url()

    def test_url_from_environment(self, module_engine):
        assert get_engine() is module_engine
        assert module_engine.dialect.name == "sqlite"
        assert not is_postgres(module_engine)


class TestSessionScope:
    def test_rolls_back_on_error(self, module_engine):
        with pytest.raises(ZeroDivisionError):
            with session_scope() as session:
                session.execute(select(func.count()).select_from(CommentModel))
                1 / 0

    def test_commits_on_success(self, module_engine):
        with session_scope(get_session_factory()) as session:
            assert session.execute(
                select(func.count()).select_from(CommentModel)
            ).scalar_one() == 0
