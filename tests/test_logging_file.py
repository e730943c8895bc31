def test_file_logging_creation(monkeypatch, tmp_path):
    log_dir = tmp_path / "logs"
    monkeypatch.setenv("COPROCS_LOG_DIR", str(log_dir))
    monkeypatch.setenv("COPROCS_LOG_LEVEL", "DEBUG")
    from coprocs.core.logging import get_logger
    logger = get_logger("coprocs.core.test_file")
    logger.debug("test debug line")
    logger.info("info line")
    file_path = log_dir / "coprocs.log"
    assert file_path.exists()
    content = file_path.read_text(encoding="utf-8")
    assert "test debug line" in content
    assert "[coprocs.core.test_file] info line" in content
    for h in logger.handlers:
        h.close()


def test_preview_line_truncates():
    from coprocs.core.logging import preview_line
    assert preview_line("short\n") == "short"
    assert preview_line("x" * 200, limit=10) == "xxxxxxx..."
