"""Unit tests for kvtrain metric loggers."""

import csv
import io
import sys
from unittest.mock import Mock, patch

import pytest

from kvtrain.logging import Basic, CSVLogger, MetricsMeter, MultiLogger, NullLogger, format_value
from kvtrain.logging.tensorboard import TensorBoardLogger


class TestFormatValue:
    def test_regular_float(self):
        assert format_value(0.123456789) == "0.123457"

    def test_small_and_large_floats(self):
        assert format_value(1e-5) == "1.000e-05"
        assert format_value(2.5e6) == "2.500e+06"

    def test_zero_and_ints(self):
        assert format_value(0.0) == "0.000000"
        assert format_value(42) == "42"
        assert format_value("ccsgd") == "ccsgd"


class TestBasic:
    """Test cases for Basic logger."""

    def test_init_default(self):
        logger = Basic()
        assert logger.name == "kvtrain"
        assert logger.output == sys.stdout
        assert logger.show_timestamp is True
        assert logger.show_elapsed is True

    def test_log_scalar(self):
        output = io.StringIO()
        logger = Basic(output=output, show_timestamp=False, show_elapsed=False)
        logger.log_scalar("accuracy", 0.5, step=100)
        assert output.getvalue().strip() == "Step    100 | accuracy=0.500000"

    def test_log_dict_keeps_order(self):
        output = io.StringIO()
        logger = Basic(output=output, show_timestamp=False, show_elapsed=False)
        logger.log_dict({"epoch": 1, "accuracy": 0.25}, step=7)
        assert output.getvalue().strip() == "Step      7 | epoch=1 accuracy=0.250000"

    def test_exclude_prefixes(self):
        output = io.StringIO()
        logger = Basic(
            output=output, show_timestamp=False, show_elapsed=False, exclude_prefixes=("run/",)
        )
        logger.log_dict({"run/jax_version": "0.4.30"}, step=0)
        assert output.getvalue() == ""
        logger.log_dict({"run/jax_version": "0.4.30", "loss": 1.0}, step=1)
        assert "run/" not in output.getvalue()
        assert "loss=1.000000" in output.getvalue()

    @patch("time.time")
    def test_elapsed_time(self, mock_time):
        mock_time.side_effect = [1000.0, 1002.5]
        output = io.StringIO()
        logger = Basic(output=output, show_timestamp=False, show_elapsed=True)
        logger.log_scalar("loss", 1.0, step=1)
        assert "2.50s" in output.getvalue()

    def test_timestamp_prefix(self):
        output = io.StringIO()
        logger = Basic(output=output, show_elapsed=False)
        with patch.object(logger, "_get_timestamp", return_value="2024-01-01 00:00:00"):
            logger.log_scalar("loss", 1.0, step=1)
        assert output.getvalue().startswith("[2024-01-01 00:00:00] | Step")

    def test_close_leaves_stdout_open(self):
        logger = Basic()
        logger.close()
        assert not sys.stdout.closed

    def test_close_closes_custom_stream(self):
        output = io.StringIO()
        Basic(output=output).close()
        assert output.closed


class TestCSVLogger:
    def read_rows(self, path):
        with open(path, newline="", encoding="utf-8") as handle:
            return list(csv.DictReader(handle))

    def test_writes_rows(self, tmp_path):
        path = tmp_path / "logs" / "metrics.csv"
        logger = CSVLogger(path)
        logger.log_dict({"loss": 0.5}, step=1)
        logger.log_dict({"loss": 0.25}, step=2)
        rows = self.read_rows(path)
        assert [row["step"] for row in rows] == ["1", "2"]
        assert [row["loss"] for row in rows] == ["0.5", "0.25"]

    def test_new_columns_widen_header(self, tmp_path):
        path = tmp_path / "metrics.csv"
        logger = CSVLogger(path)
        logger.log_dict({"loss": 0.5}, step=1)
        logger.log_dict({"accuracy": 0.9}, step=2)
        rows = self.read_rows(path)
        assert rows[0] == {"step": "1", "loss": "0.5", "accuracy": ""}
        assert rows[1] == {"step": "2", "loss": "", "accuracy": "0.9"}

    def test_empty_metrics_ignored(self, tmp_path):
        path = tmp_path / "metrics.csv"
        CSVLogger(path).log_dict({}, step=1)
        assert self.read_rows(path) == []

    def test_append_keeps_previous_rows(self, tmp_path):
        path = tmp_path / "metrics.csv"
        CSVLogger(path).log_dict({"loss": 0.5}, step=1)
        CSVLogger(path, append=True).log_dict({"loss": 0.4}, step=2)
        assert [row["step"] for row in self.read_rows(path)] == ["1", "2"]

    def test_without_append_truncates(self, tmp_path):
        path = tmp_path / "metrics.csv"
        CSVLogger(path).log_dict({"loss": 0.5}, step=1)
        CSVLogger(path)
        assert self.read_rows(path) == []


class TestTensorBoardLogger:
    def test_writes_numeric_events(self, tmp_path):
        with patch("kvtrain.logging.tensorboard.EventFileWriter") as writer_cls:
            logger = TensorBoardLogger(tmp_path / "tb")
            logger.log_dict({"accuracy": 0.75, "run/optimizer": "ccsgd", "flag": True}, step=3)
            logger.close()

        writer = writer_cls.return_value
        event = writer.add_event.call_args.args[0]
        assert event.step == 3
        assert [value.tag for value in event.summary.value] == ["accuracy"]
        assert event.summary.value[0].simple_value == pytest.approx(0.75)
        writer.close.assert_called_once()

    def test_skips_non_numeric_dicts(self, tmp_path):
        with patch("kvtrain.logging.tensorboard.EventFileWriter") as writer_cls:
            TensorBoardLogger(tmp_path / "tb").log_dict({"run/kvstore": "local"}, step=0)
        writer_cls.return_value.add_event.assert_not_called()

    def test_writes_event_file(self, tmp_path):
        logger = TensorBoardLogger(tmp_path / "tb")
        logger.log_scalar("loss", 1.0, step=1)
        logger.close()
        assert any(path.name.startswith("events.out.tfevents") for path in (tmp_path / "tb").iterdir())


class TestMultiAndNullLogger:
    def test_multi_logger_fans_out(self):
        first, second = Mock(), Mock()
        multi = MultiLogger([first, second])
        multi.log_dict({"loss": 1.0}, step=2)
        multi.log_scalar("accuracy", 0.5, step=2)
        multi.flush()
        multi.close()
        for logger in (first, second):
            logger.log_dict.assert_called_once_with({"loss": 1.0}, 2)
            logger.log_scalar.assert_called_once_with("accuracy", 0.5, 2)
            logger.flush.assert_called_once()
            logger.close.assert_called_once()

    def test_null_logger(self):
        logger = NullLogger()
        logger.log_scalar("loss", 1.0, 0)
        logger.log_dict({"loss": 1.0}, 0)
        logger.flush()
        logger.close()


class TestMetricsMeter:
    def test_invalid_window(self):
        with pytest.raises(ValueError, match="window must be positive"):
            MetricsMeter(window=0)

    def test_negative_step_time(self):
        with pytest.raises(ValueError, match="non-negative"):
            MetricsMeter().update(step=1, batch_size=4, step_time_s=-1.0)

    def test_moving_averages(self):
        meter = MetricsMeter(window=2)
        meter.update(step=1, batch_size=10, step_time_s=1.0)
        meter.update(step=2, batch_size=10, step_time_s=2.0)
        metrics = meter.update(step=3, batch_size=30, step_time_s=3.0)
        assert metrics["meter/step_time_s"] == 3.0
        assert metrics["meter/step_time_s_ma"] == pytest.approx(2.5)
        assert metrics["meter/samples_per_s_ma"] == pytest.approx(40 / 5)
        assert metrics["meter/samples"] == 50
        assert metrics["meter/step"] == 3

    def test_unknown_batch_size(self):
        metrics = MetricsMeter().update(step=1, batch_size=None, step_time_s=0.5)
        assert metrics["meter/samples"] == 0
        assert "meter/samples_per_s" not in metrics

    def test_reset(self):
        meter = MetricsMeter()
        meter.update(step=1, batch_size=8, step_time_s=0.1)
        meter.reset()
        assert meter.total_samples == 0
