"""End-to-end runs of the LeNet and ads training drivers on tiny data."""

import csv
from unittest.mock import Mock, patch

import fsspec
import jax
import numpy as np
import pytest

from kvtrain import kvstore
from kvtrain.config import AdsConfig, LenetConfig
from kvtrain.drivers import ads, lenet
from kvtrain.io import OrbaxCheckpoint
from kvtrain.kvstore import LocalKVStore


class MockLogger:
    def __init__(self):
        self.logged_dicts = []

    def log_scalar(self, name, value, step):
        self.log_dict({name: value}, step)

    def log_dict(self, metrics, step):
        self.logged_dicts.append((dict(metrics), step))

    def metric(self, name):
        return [metrics[name] for metrics, _ in self.logged_dicts if name in metrics]


class WorkerStore(LocalKVStore):
    """Local store posing as one worker of a group; counts gradient pushes."""

    def __init__(self, rank, num_workers, peer_batches):
        super().__init__()
        self._rank = rank
        self._num_workers = num_workers
        self.peer_batches = peer_batches
        self.pushes = 0

    @property
    def rank(self):
        return self._rank

    @property
    def num_workers(self):
        return self._num_workers

    def max_across_workers(self, value):
        return max(value, self.peer_batches)

    def push(self, keys, values):
        self.pushes += 1
        super().push(keys, values)


def write_image_csv(path, rows=40, seed=0):
    rng = np.random.default_rng(seed)
    with open(path, "w", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(["label"] + [f"pixel{i}" for i in range(28 * 28)])
        for _ in range(rows):
            writer.writerow([int(rng.integers(0, 10))] + rng.integers(0, 256, 28 * 28).tolist())
    return path


def make_records(count=50, sample_size=9, seed=0):
    rng = np.random.default_rng(seed)
    records = rng.normal(size=(count, sample_size)).astype("<f4")
    records[:, 0] = rng.integers(0, 2, count)
    return records


class TestLenetDriver:
    def setup_method(self):
        self.logger = MockLogger()

    def test_run_reports_epoch_accuracy(self, tmp_path, caplog):
        path = write_image_csv(tmp_path / "train.csv")
        config = LenetConfig(data_path=str(path), batch_size=2, epochs=2, val_fold=5)

        with caplog.at_level("INFO", logger="kvtrain.drivers.lenet"):
            history = lenet.run(config, loggers=[self.logger])

        assert len(history) == 2
        assert all(0.0 <= accuracy <= 1.0 for accuracy in history)
        assert self.logger.metric("val/accuracy") == history
        assert "data loaded: 20 train, 20 validation" in caplog.text
        assert "epoch 1, accuracy:" in caplog.text
        assert "conv1_w" in caplog.text
        # 20 training rows in batches of 2, twice
        assert max(step for _, step in self.logger.logged_dicts) == 20

    def test_missing_csv(self, tmp_path):
        from kvtrain.exceptions import DataError

        config = LenetConfig(data_path=str(tmp_path / "absent.csv"), epochs=1)
        with pytest.raises(DataError, match="CSV file not found"):
            lenet.run(config)

    def test_main_with_checkpoint_resume(self, tmp_path):
        path = write_image_csv(tmp_path / "train.csv")
        checkpoint_dir = tmp_path / "ckpt"
        csv_log = tmp_path / "metrics.csv"
        argv = [
            "--data", str(path),
            "--epochs", "1",
            "--batch-size", "2",
            "--val-fold", "5",
            "--checkpoint-dir", str(checkpoint_dir),
            "--csv-log", str(csv_log),
        ]

        lenet.main(argv)
        assert OrbaxCheckpoint(checkpoint_dir).latest_step() == 10
        with open(csv_log, newline="") as handle:
            columns = next(csv.reader(handle))
        assert "val/accuracy" in columns
        assert "loss" in columns

        lenet.main(argv + ["--resume"])
        assert OrbaxCheckpoint(checkpoint_dir).latest_step() == 20

    def test_header_and_final_save_once_per_run(self, tmp_path):
        path = write_image_csv(tmp_path / "train.csv")
        config = LenetConfig(data_path=str(path), batch_size=2, epochs=3, val_fold=5)
        checkpoint = Mock()

        lenet.run(config, loggers=[self.logger], checkpoint=checkpoint)

        checkpoint.save.assert_called_once()
        assert checkpoint.save.call_args.args[0].step == 30
        assert len(self.logger.metric("run/jax_version")) == 1
        assert self.logger.metric("checkpoint/final") == [30]
        assert self.logger.metric("meter/samples")[-1] == 60


class TestAdsDriver:
    def setup_method(self):
        self.logger = MockLogger()

    def make_config(self, uri, **kwargs):
        options = dict(
            data_uri=uri,
            kvstore="local",
            batch_size=16,
            sample_size=9,
            hidden=(8, 4),
            init_stddev=0.1,
        )
        options.update(kwargs)
        return AdsConfig(**options)

    def test_run_local_file(self, tmp_path, caplog):
        path = tmp_path / "train.bin"
        make_records().tofile(path)
        config = self.make_config(str(path), epochs=2)

        with caplog.at_level("INFO", logger="kvtrain.drivers.ads"):
            processed = ads.run(config, kvstore.create("local"), loggers=[self.logger])

        assert processed == 100
        accuracies = self.logger.metric("accuracy")
        assert len(accuracies) == 8
        assert all(0.0 <= accuracy <= 1.0 for accuracy in accuracies)
        assert self.logger.metric("progress")[-1] == pytest.approx(100.0)
        assert caplog.text.count("Total samples: 50") == 2
        assert "Iter 1, accuracy:" in caplog.text

    def test_run_remote_uri(self):
        records = make_records(count=20)
        with fsspec.open("memory://kvtrain-tests/ads.bin", "wb") as handle:
            handle.write(records.tobytes())

        config = self.make_config("memory://kvtrain-tests/ads.bin")
        kv = kvstore.create("local")
        assert ads.run(config, kv, loggers=[self.logger]) == 20
        assert set(kv.keys()) == {"w1", "b1", "w2", "b2", "w3", "b3"}

    def test_parameters_move(self, tmp_path):
        path = tmp_path / "train.bin"
        make_records().tofile(path)
        config = self.make_config(str(path), rescale_grad=1.0, learning_rate=0.1)
        kv = kvstore.create("local")

        ads.run(config, kv)
        initial = ads.init_ads_params(jax.random.PRNGKey(config.seed), 8, (8, 4), 0.1)
        (w3,) = kv.pull("w3")
        assert np.all(np.isfinite(np.asarray(w3)))
        assert not np.allclose(np.asarray(w3), np.asarray(initial["w3"]))

    def test_checkpoint_resume(self, tmp_path):
        path = tmp_path / "train.bin"
        make_records().tofile(path)
        config = self.make_config(str(path))
        checkpoint = OrbaxCheckpoint(tmp_path / "ckpt")

        ads.run(config, kvstore.create("local"), checkpoint=checkpoint, checkpoint_interval=2)
        assert checkpoint.list_available_steps() == [2, 4]

        ads.run(config, kvstore.create("local"), checkpoint=checkpoint, resume=True)
        assert checkpoint.latest_step() == 8

    def test_main_local_store(self, tmp_path, monkeypatch, caplog):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("DMLC_ROLE", raising=False)
        make_records().tofile(tmp_path / "train.bin")

        with caplog.at_level("INFO", logger="kvtrain.drivers.ads"):
            ads.main([
                str(tmp_path / "train.bin"),
                "--kvstore", "local",
                "--batch-size", "16",
                "--sample-size", "9",
            ])
        assert "Training Duration" in caplog.text
        assert "Total samples: 50" in caplog.text

    def test_main_server_role(self, tmp_path, monkeypatch, caplog):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("DMLC_ROLE", "server")
        with patch("kvtrain.drivers.ads.run") as run, \
                caplog.at_level("INFO", logger="kvtrain.drivers.ads"):
            ads.main([str(tmp_path / "train.bin"), "--kvstore", "dist_sync"])
        run.assert_not_called()
        assert "Running KVStore server" in caplog.text

    @pytest.mark.parametrize(
        "partition, batches",
        [("contiguous", [1, 2]), ("round_robin", [2, 1])],
    )
    def test_workers_push_equally_with_uneven_partitions(self, partition, batches):
        records = make_records(count=6145)
        uri = f"memory://kvtrain-tests/uneven-{partition}.bin"
        with fsspec.open(uri, "wb") as handle:
            handle.write(records.tobytes())
        config = self.make_config(uri, batch_size=3072, partition=partition)

        stores = [WorkerStore(rank, 2, batches[1 - rank]) for rank in range(2)]
        processed = [ads.run(config, kv) for kv in stores]

        assert sorted(processed) == [3072, 3073]
        assert [kv.pushes for kv in stores] == [2, 2]

    def test_empty_partition_still_pushes(self, caplog):
        uri = "memory://kvtrain-tests/single.bin"
        with fsspec.open(uri, "wb") as handle:
            handle.write(make_records(count=1).tobytes())
        config = self.make_config(uri, epochs=2)
        kv = WorkerStore(0, 2, peer_batches=1)

        with caplog.at_level("DEBUG", logger="kvtrain.drivers.ads"):
            assert ads.run(config, kv) == 0
        assert kv.pushes == 2
        assert "out of records, pushed zero gradients" in caplog.text

    def test_uneven_workers_checkpoint_same_steps(self):
        records = make_records(count=49)
        uri = "memory://kvtrain-tests/uneven-ckpt.bin"
        with fsspec.open(uri, "wb") as handle:
            handle.write(records.tobytes())
        config = self.make_config(uri, batch_size=12)

        saved_steps = []
        # 24 and 25 records: 2 and 3 batches
        for rank, peer_batches in ((0, 3), (1, 2)):
            checkpoint = Mock()
            ads.run(config, WorkerStore(rank, 2, peer_batches), checkpoint=checkpoint,
                    checkpoint_interval=1)
            saved_steps.append([call.args[0].step for call in checkpoint.save.call_args_list])
        assert saved_steps[0] == saved_steps[1] == [1, 2, 3, 3]
