"""
Tests for the command-line replay tool.
"""

import json

import numpy as np
import pytest
import yaml

from face2pose.cli import main
from face2pose.config import Config

from conftest import encode_landmarks, face_points


@pytest.fixture
def recording(tmp_path):
    """Five good frames followed by one with too few landmarks."""
    frames = [
        {
            "timestamp": i / 30,
            "confidence": 0.95,
            "landmarks": encode_landmarks(face_points(offset=(0.001 * i, 0.0, 0.0))).tolist(),
        }
        for i in range(5)
    ]
    frames.append({"timestamp": 5 / 30, "landmarks": np.full((10, 3), 0.5).tolist()})

    path = tmp_path / "session.json"
    path.write_text(json.dumps({"source": "mediapipe", "image_size": [1280, 720], "frames": frames}))
    return path


class TestSaveConfig:
    """Test --save-config."""

    def test_writes_template(self, tmp_path):
        """The template is written and parses to the defaults."""
        path = tmp_path / "face2pose.yaml"

        assert main(["--save-config", str(path)]) == 0
        assert Config.from_dict(yaml.safe_load(path.read_text())) == Config()


class TestReplay:
    """Test replaying a recording."""

    def test_report(self, recording, tmp_path):
        """Every good frame yields a transform; short frames are skipped."""
        output = tmp_path / "transforms.json"

        assert main([str(recording), "--output", str(output)]) == 0

        report = json.loads(output.read_text())
        assert report["algorithm"] == "hybrid"
        assert [t["frame"] for t in report["transforms"]] == [0, 1, 2, 3, 4]
        assert report["skipped_frames"] == [5]
        assert all(t["status"] == "tracking" for t in report["transforms"])
        assert len(report["transforms"][0]["position"]) == 3
        assert set(report["quality"]) == {
            "stability", "accuracy", "smoothness", "responsiveness", "overall_score"
        }

    def test_stdout(self, recording, capsys):
        """Without --output the report goes to stdout."""
        assert main([str(recording), "--algorithm", "basic"]) == 0

        report = json.loads(capsys.readouterr().out)
        assert report["algorithm"] == "basic"
        assert len(report["transforms"]) == 5


class TestErrors:
    """Test failure exit codes."""

    def test_missing_input(self, capsys):
        """A recording is required."""
        assert main([]) == 1
        assert "recording is required" in capsys.readouterr().err

    def test_missing_file(self, tmp_path, capsys):
        """Missing recordings are reported."""
        assert main([str(tmp_path / "nope.json")]) == 1
        assert "not found" in capsys.readouterr().err

    def test_invalid_config(self, recording, tmp_path, capsys):
        """Invalid configuration files are reported."""
        config = tmp_path / "bad.yaml"
        config.write_text("positioning:\n  position_smoothing_factor: 1.5\n")

        assert main(["--config", str(config), str(recording)]) == 1
        assert "Configuration error" in capsys.readouterr().err

    def test_bad_fps(self, recording, capsys):
        """Frame rate must be positive."""
        assert main([str(recording), "--fps", "0"]) == 1
        assert "fps" in capsys.readouterr().err

    def test_unsupported_source(self, tmp_path, capsys):
        """Recordings from unknown detectors are rejected."""
        path = tmp_path / "session.json"
        path.write_text(json.dumps({"source": "dlib", "frames": []}))

        assert main([str(path)]) == 1
        assert "Unsupported" in capsys.readouterr().err
