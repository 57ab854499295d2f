"""Tests for the command-line interface."""

import json
import os

import numpy as np
import pytest

from linemeasure.cli import main


@pytest.fixture
def run_inputs(temp_dir, relative_ramp, metric_reference):
    """Relative/absolute depth, lines and intrinsics written to disk."""
    paths = {
        "relative": os.path.join(temp_dir, "relative.npy"),
        "absolute": os.path.join(temp_dir, "absolute.bin"),
        "lines": os.path.join(temp_dir, "lines.json"),
        "intrinsics": os.path.join(temp_dir, "intrinsics.yaml"),
        "out": os.path.join(temp_dir, "out"),
    }
    np.save(paths["relative"], relative_ramp.values)
    metric_reference.values.astype("<f4").tofile(paths["absolute"])
    with open(paths["lines"], "w", encoding="utf-8") as f:
        json.dump([[10, 10, 110, 10], [20, 80, 100, 30]], f)
    with open(paths["intrinsics"], "w", encoding="utf-8") as f:
        f.write("fx: 100\nfy: 100\ncx: 64\ncy: 48\nwidth: 128\nheight: 96\n")
    return paths


def _run(paths, *extra):
    return main([
        "run",
        "--relative", paths["relative"],
        "--absolute", paths["absolute"],
        "--absolute-size", "32", "24",
        "--lines", paths["lines"],
        "--intrinsics", paths["intrinsics"],
        "--out", paths["out"],
        *extra,
    ])


class TestRunCommand:
    def test_writes_result(self, run_inputs, capsys):
        assert _run(run_inputs) == 0

        with open(os.path.join(run_inputs["out"], "result.json"), "r", encoding="utf-8") as f:
            summary = json.load(f)

        assert summary["metric_trusted"] is True
        assert summary["alignment"]["method"] == "least_squares"
        assert summary["alignment"]["scale"] == pytest.approx(2.5, rel=1e-3)
        assert summary["image_size"] == [128, 96]
        assert len(summary["lines"]) == 2
        assert "Lines measured: 2/2" in capsys.readouterr().out

    def test_debug_artifacts(self, run_inputs):
        assert _run(run_inputs, "--debug") == 0

        depth_dir = os.path.join(run_inputs["out"], "debug", "frame_000000", "depth")
        assert os.path.exists(os.path.join(depth_dir, "depth.png"))
        assert os.path.exists(os.path.join(depth_dir, "error.png"))

    def test_without_reference_warns(self, run_inputs, capsys):
        code = main([
            "run",
            "--relative", run_inputs["relative"],
            "--lines", run_inputs["lines"],
            "--intrinsics", run_inputs["intrinsics"],
            "--out", run_inputs["out"],
        ])

        assert code == 0
        assert "not metric" in capsys.readouterr().out

    def test_missing_input_fails(self, run_inputs, capsys):
        run_inputs["relative"] = os.path.join(run_inputs["out"], "missing.npy")

        assert _run(run_inputs) == 1
        assert "Error" in capsys.readouterr().err


class TestSelectCommand:
    def test_selects_nearest_line(self, run_inputs, capsys):
        _run(run_inputs)
        capsys.readouterr()

        code = main([
            "select",
            "--result", os.path.join(run_inputs["out"], "result.json"),
            "--point", "30", "6",
            "--display-size", "256", "192",
        ])

        assert code == 0
        assert "Selected line 0 (index 0)" in capsys.readouterr().out

    def test_miss(self, run_inputs, capsys):
        _run(run_inputs)
        capsys.readouterr()

        code = main([
            "select",
            "--result", os.path.join(run_inputs["out"], "result.json"),
            "--point", "120", "90",
        ])

        assert code == 0
        assert "No line within selection threshold." in capsys.readouterr().out


class TestInitConfig:
    def test_writes_file(self, temp_dir):
        path = os.path.join(temp_dir, "config.yaml")

        assert main(["init-config", "--out", path]) == 0
        assert os.path.exists(path)
