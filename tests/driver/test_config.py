"""Configuration loading tests."""

import pytest

from typeprof.config import ProfilerConfig, dict_to_config, find_config, load_config
from typeprof.errors import ConfigError


class TestFindConfig:

    def test_walks_up(self, tmp_path):
        (tmp_path / ".typeprofrc.yml").write_text("parallel: true\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_config(str(nested)) == str(tmp_path / ".typeprofrc.yml")

    def test_yml_preferred_over_json(self, tmp_path):
        (tmp_path / ".typeprofrc.json").write_text("{}")
        (tmp_path / ".typeprofrc.yml").write_text("")
        assert find_config(str(tmp_path)).endswith(".typeprofrc.yml")


class TestLoadConfig:

    def test_defaults_without_file(self, tmp_path):
        config = load_config(start_dir=str(tmp_path))
        assert config == ProfilerConfig()
        assert config.explore_both_branches is True
        assert config.max_union_splitting == 4
        assert config.widen_after <= config.max_fixpoint_iterations

    def test_yaml(self, tmp_path):
        path = tmp_path / ".typeprofrc.yml"
        path.write_text("explore_both_branches: false\nmax_union_splitting: 2\nformat: json\n")
        config = load_config(str(path))
        assert config.explore_both_branches is False
        assert config.max_union_splitting == 2
        assert config.format == "json"

    def test_json(self, tmp_path):
        path = tmp_path / ".typeprofrc.json"
        path.write_text('{"parallel": true, "parallel_workers": 2}')
        config = load_config(str(path))
        assert config.parallel is True
        assert config.parallel_workers == 2

    def test_empty_file(self, tmp_path):
        path = tmp_path / ".typeprofrc.yml"
        path.write_text("")
        assert load_config(str(path)) == ProfilerConfig()

    @pytest.mark.parametrize("content", [
        "bogus_key: 1\n",
        "- a\n- b\n",
        "max_union_splitting: zero\n",
        "max_fixpoint_iterations: 0\n",
        "widen_after: 50\n",
        "format: xml\n",
        "key: [unclosed\n",
    ])
    def test_invalid(self, tmp_path, content):
        path = tmp_path / ".typeprofrc.yml"
        path.write_text(content)
        with pytest.raises(ConfigError):
            load_config(str(path))

    def test_overrides_onto_base(self):
        base = ProfilerConfig(parallel=True)
        config = dict_to_config({"max_inferences": "50"}, base)
        assert config.parallel is True
        assert config.max_inferences == 50
