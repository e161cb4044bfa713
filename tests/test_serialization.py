import pickle
import tempfile
from pathlib import Path

import pytest
import numpy as np
from gradstep.core import Tensor
from gradstep.optim import LBFGS, SGD, Adam, AdaGrad, RMSprop, serialize
from gradstep.optim.serialize import InputArchive, OutputArchive


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


def run_steps(optimizer, param, grads):
    for grad in grads:
        param.grad = np.array(grad)
        optimizer.step()


class TestArchives:
    """Tests for the archive containers."""

    def test_write_and_read_values(self, temp_dir):
        archive = OutputArchive()
        archive.write("count", 3)
        archive.write("rate", 0.5)
        archive.write("name", "sgd")
        archive.write("missing", None)
        archive.write("array", np.arange(3.0))
        archive.write("pair", (1, 2))
        archive.write("tensor", Tensor([1.0, 2.0], device="cpu:1"))

        path = temp_dir / "values.pt"
        archive.save_to(path)
        loaded = InputArchive.load_from(path)

        assert sorted(loaded.keys()) == sorted(archive.keys())
        assert loaded.read("count") == 3
        assert loaded.read("rate") == 0.5
        assert loaded.read("name") == "sgd"
        assert loaded.read("missing") is None
        assert np.array_equal(loaded.read("array"), [0.0, 1.0, 2.0])
        assert loaded.read("pair") == (1, 2)

        tensor = loaded.read("tensor")
        assert isinstance(tensor, Tensor)
        assert tensor.device == "cpu:1"
        assert np.array_equal(tensor.data, [1.0, 2.0])

    def test_nested_archives(self):
        inner = OutputArchive()
        inner.write("x", 1)
        outer = OutputArchive()
        outer.write("inner", inner)

        loaded = InputArchive(outer._entries)
        assert "inner" in loaded
        assert loaded.read("inner").read("x") == 1

    def test_duplicate_key(self):
        archive = OutputArchive()
        archive.write("key", 1)
        with pytest.raises(KeyError):
            archive.write("key", 2)

    def test_missing_key(self):
        archive = InputArchive()
        with pytest.raises(KeyError):
            archive.read("absent")
        assert archive.try_read("absent", 7) == 7

    def test_unsupported_value(self):
        with pytest.raises(TypeError):
            OutputArchive().write("obj", object())

    def test_stored_values_are_copies(self):
        array = np.zeros(2)
        archive = OutputArchive()
        archive.write("array", array)
        array[0] = 5.0
        assert InputArchive(archive._entries).read("array")[0] == 0.0

    def test_rejects_foreign_files(self, temp_dir):
        path = temp_dir / "other.pkl"
        with open(path, "wb") as f:
            pickle.dump({"weights": [1, 2]}, f)
        with pytest.raises(ValueError):
            InputArchive.load_from(path)

    def test_rejects_unknown_version(self, temp_dir):
        path = temp_dir / "future.pt"
        with open(path, "wb") as f:
            pickle.dump({"format": "gradstep.archive", "version": 99, "entries": {}}, f)
        with pytest.raises(ValueError):
            InputArchive.load_from(path)


class TestOptimizerSerialization:
    """Optimizers restored from a file continue exactly where they left off."""

    grads = [[0.1, -0.2], [0.3, 0.1], [-0.2, 0.2]]

    def _round_trip(self, temp_dir, factory):
        param = Tensor([1.0, 2.0], requires_grad=True)
        optimizer = factory([param])
        run_steps(optimizer, param, self.grads[:2])

        path = temp_dir / "optimizer.pt"
        serialize.save(optimizer, path)
        assert path.exists()

        restored_param = Tensor(param.data.copy(), requires_grad=True)
        restored = factory([restored_param])
        serialize.load(restored, path)

        run_steps(optimizer, param, self.grads[2:])
        run_steps(restored, restored_param, self.grads[2:])
        assert np.allclose(param.data, restored_param.data)
        return optimizer, restored

    def test_sgd(self, temp_dir):
        optimizer, restored = self._round_trip(
            temp_dir, lambda params: SGD(params, lr=0.1, momentum=0.9)
        )
        assert np.allclose(restored.state[0].momentum_buffer, optimizer.state[0].momentum_buffer)

    def test_adam(self, temp_dir):
        optimizer, restored = self._round_trip(
            temp_dir, lambda params: Adam(params, lr=0.01, amsgrad=True)
        )
        assert restored.state[0].step == optimizer.state[0].step == 3

    def test_rmsprop(self, temp_dir):
        self._round_trip(temp_dir, lambda params: RMSprop(params, lr=0.01, momentum=0.5, centered=True))

    def test_adagrad(self, temp_dir):
        optimizer, restored = self._round_trip(
            temp_dir, lambda params: AdaGrad(params, lr=0.1, lr_decay=0.01)
        )
        assert restored.step_buffers[0] == 3
        assert isinstance(restored.sum_buffers[0], Tensor)

    def test_stateless_sgd(self, temp_dir):
        _, restored = self._round_trip(temp_dir, lambda params: SGD(params, lr=0.1))
        assert restored.state == {}

    def test_lbfgs(self, temp_dir):
        target = Tensor([1.0, 1.0])

        def make(param):
            optimizer = LBFGS([param], lr=0.5, max_iter=2)

            def closure():
                optimizer.zero_grad()
                diff = param - target
                loss = (diff * diff).sum()
                loss.backward()
                return loss

            return optimizer, closure

        param = Tensor([3.0, -1.0], requires_grad=True)
        optimizer, closure = make(param)
        optimizer.step(closure)

        path = temp_dir / "lbfgs.pt"
        serialize.save(optimizer, path)

        restored_param = Tensor(param.data.copy(), requires_grad=True)
        restored, restored_closure = make(restored_param)
        serialize.load(restored, path)

        assert restored.state[0].n_iter == optimizer.state[0].n_iter
        assert len(restored.state[0].old_dirs) == len(optimizer.state[0].old_dirs)

        optimizer.step(closure)
        restored.step(restored_closure)
        assert np.allclose(param.data, restored_param.data)
