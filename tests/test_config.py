# NG-HEADER: Nombre de archivo: test_config.py
# NG-HEADER: Ubicación: tests/test_config.py
# NG-HEADER: Descripción: Tests de lectura y validación de la configuración.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from decimal import Decimal

import pytest

from core.config import Settings, env_flag


@pytest.mark.parametrize("raw,expected", [("1", True), ("TRUE", True), (" yes ", True), ("on", True), ("0", False), ("no", False), ("", False)])
def test_env_flag(monkeypatch, raw, expected):
    monkeypatch.setenv("TARBACA_TEST_FLAG", raw)
    assert env_flag("TARBACA_TEST_FLAG") is expected


def test_env_flag_default(monkeypatch):
    monkeypatch.delenv("TARBACA_TEST_FLAG", raising=False)
    assert env_flag("TARBACA_TEST_FLAG", "true") is True


def test_tax_rate_out_of_range_fails_fast():
    with pytest.raises(RuntimeError):
        Settings(db_url="sqlite+aiosqlite:///:memory:", tax_rate=Decimal("13"))


def test_production_requires_allowed_origins(monkeypatch):
    monkeypatch.delenv("ALLOWED_ORIGINS", raising=False)
    with pytest.raises(RuntimeError):
        Settings(env="prod", db_url="postgresql+psycopg://u@h/db")


def test_dev_expands_localhost_origins(monkeypatch):
    monkeypatch.setenv("ALLOWED_ORIGINS", "http://localhost:3000")
    cfg = Settings(env="dev", db_url="sqlite+aiosqlite:///:memory:")
    assert set(cfg.allowed_origins) == {"http://localhost:3000", "http://127.0.0.1:3000"}
