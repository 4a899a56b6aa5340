"""Tests for utility functions."""

import logging
import os
import tempfile
from pathlib import Path

import numpy as np

from sarmap.utils.helpers import ensure_directory, format_duration, make_rng, resolve_n_jobs
from sarmap.utils.logger import setup_logger


class TestRandomGenerator:
    """Test random generator utilities."""

    def test_same_seed_same_stream(self):
        """Test that equal seeds give identical draws."""
        first = make_rng(42).uniform(size=5)
        second = make_rng(42).uniform(size=5)

        np.testing.assert_array_equal(first, second)

    def test_generator_passthrough(self):
        rng = np.random.default_rng(0)

        assert make_rng(rng) is rng


class TestWorkers:
    """Test worker count resolution."""

    def test_explicit_and_default(self):
        assert resolve_n_jobs(None) == 1
        assert resolve_n_jobs(3) == 3

    def test_negative_counts_from_cpus(self):
        assert resolve_n_jobs(-1) == (os.cpu_count() or 1)

    def test_capped_by_tasks(self):
        assert resolve_n_jobs(8, n_tasks=3) == 3
        assert resolve_n_jobs(8, n_tasks=0) == 1


class TestDirectoryUtils:
    """Test directory utilities."""

    def test_ensure_directory(self):
        """Test directory creation."""
        with tempfile.TemporaryDirectory() as temp_dir:
            test_path = Path(temp_dir) / "new_dir" / "nested_dir"

            assert not test_path.exists()

            result = ensure_directory(test_path)

            assert test_path.exists()
            assert test_path.is_dir()
            assert result == test_path


class TestFormatDuration:
    """Test duration formatting."""

    def test_format_duration(self):
        assert format_duration(30) == "30s"
        assert format_duration(90) == "1m 30s"
        assert format_duration(3661) == "1h 1m 1s"


class TestLogger:
    """Test component loggers."""

    def test_writes_to_log_file(self):
        """Messages reach the configured log file."""
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = Path(temp_dir) / "run.log"
            logger = setup_logger(
                "test_component",
                logger_name="sarmap.test_file",
                log_file=log_file,
                level=logging.INFO,
            )

            logger.info("fold matching done")
            for handler in logging.getLogger("sarmap.test_file").handlers:
                handler.flush()

            assert "fold matching done" in log_file.read_text(encoding="utf-8")

            for handler in list(logging.getLogger("sarmap.test_file").handlers):
                handler.close()
                logging.getLogger("sarmap.test_file").removeHandler(handler)

    def test_log_file_from_environment(self, monkeypatch, tmp_path):
        """SARMAP_LOG_FILE is used when no log file is passed."""
        log_file = tmp_path / "env.log"
        monkeypatch.setenv("SARMAP_LOG_FILE", str(log_file))
        project = logging.getLogger("sarmap.test_env")

        logger = setup_logger("test_component", logger_name="sarmap.test_env")
        logger.warning("written via environment")
        for handler in project.handlers:
            handler.flush()

        assert "written via environment" in log_file.read_text(encoding="utf-8")

        for handler in list(project.handlers):
            handler.close()
            project.removeHandler(handler)
