"""
Unit tests for the collection settings and command line.

Run with: pytest src/tests/test_collect.py -v
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

pytest.importorskip("pyscipopt")

from collect_observations import parse_settings
from data.common import CollectSettings
from data.utils import sample_dir, sample_path


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("problems: [IS]\nmax_samples: 3\n")
    return str(path)


class TestCollectSettings:
    """Settings consistency"""

    def test_defaults(self):
        settings = CollectSettings(problems=("IS",))
        assert settings.cache_static and settings.disable_cuts

    def test_cache_with_cuts_rejected(self):
        with pytest.raises(ValueError):
            CollectSettings(problems=("IS",), cache_static=True, disable_cuts=False)

    def test_no_cache_with_cuts(self):
        settings = CollectSettings(problems=("IS",), cache_static=False, disable_cuts=False)
        assert not settings.disable_cuts


class TestCommandLine:
    """Parsing the config file and flags"""

    def test_config_file(self, config_file):
        settings = parse_settings(["--configs", config_file])
        assert settings.problems == ("IS",)
        assert settings.max_samples == 3
        assert settings.cache_static
        assert settings.disable_cuts

    def test_keep_cuts_disables_cache(self, config_file):
        settings = parse_settings(["--configs", config_file, "--keep_cuts"])
        assert not settings.disable_cuts
        assert not settings.cache_static

    def test_observation_settings(self, config_file):
        settings = parse_settings(
            ["--configs", config_file, "--score_function", "s", "--check_cache_structure"]
        )
        assert settings.observation.score_function == "s"
        assert settings.observation.check_cache_structure


class TestSamplePaths:
    """Sample file layout"""

    def test_layout(self, tmp_path):
        directory = sample_dir(tmp_path, "IS", "train")
        assert directory == tmp_path / "IS" / "samples" / "train"
        assert directory.is_dir()
        assert sample_path(directory, "instance_7.lp", 2).name == "sample_instance_7_2.pkl"
