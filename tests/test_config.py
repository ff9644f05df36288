from config import get_settings


def test_import_batch_size_is_at_least_one(monkeypatch) -> None:
    monkeypatch.setenv("FINANCE_IMPORT_BATCH_SIZE", "0")
    get_settings.cache_clear()
    try:
        assert get_settings().import_batch_size == 1
    finally:
        monkeypatch.delenv("FINANCE_IMPORT_BATCH_SIZE")
        get_settings.cache_clear()
