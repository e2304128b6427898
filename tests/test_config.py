"""
Tests for config file loading, validation and CLI merging.
"""

import json
from argparse import Namespace

import pytest
import yaml

from pbsummary.cli.config import (
    FilterConfig,
    RunConfig,
    explicit_arg_names,
    load_config,
    merge_config_with_args,
    validate_config,
)


@pytest.fixture
def default_args():
    return Namespace(
        thresholds=[0.01, 0.05, 0.1],
        pvalue_threshold=0.05,
        significance=0.05,
        workers=1,
        min_count=10,
        min_group_size=3,
        min_cells=10,
        config=None,
    )


class TestLoadConfig:

    def test_yaml(self, tmp_path):
        path = tmp_path / "run.yaml"
        path.write_text(yaml.safe_dump({'thresholds': [0.05], 'filtering': {'min_count': 5}}))
        assert load_config(path) == {'thresholds': [0.05], 'filtering': {'min_count': 5}}

    def test_json(self, tmp_path):
        path = tmp_path / "run.json"
        path.write_text(json.dumps({'workers': 4}))
        assert load_config(path) == {'workers': 4}

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert load_config(path) == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "run.toml"
        path.write_text("workers = 2\n")
        with pytest.raises(ValueError, match="Unsupported"):
            load_config(path)

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "run.json"
        path.write_text("{workers: ")
        with pytest.raises(ValueError, match="Invalid JSON"):
            load_config(path)

    def test_top_level_list_rejected(self, tmp_path):
        path = tmp_path / "run.yaml"
        path.write_text("- 0.05\n- 0.1\n")
        with pytest.raises(ValueError, match="mapping"):
            load_config(path)


class TestValidateConfig:

    @pytest.mark.parametrize("config", [
        {'thresholds': []},
        {'thresholds': [0.05, 1.5]},
        {'thresholds': 0.05},
        {'significance': 0},
        {'floor': 1.0},
        {'floor': None},
        {'pvalue_threshold': 1.0},
        {'workers': 0},
        {'workers': 2.5},
        {'filtering': {'min_group_size': 0}},
        {'filtering': {'min_count': -1}},
        {'filtering': []},
    ])
    def test_invalid_values(self, config):
        with pytest.raises(ValueError):
            validate_config(config)

    def test_unknown_keys(self):
        with pytest.raises(ValueError, match="treshold"):
            validate_config({'treshold': [0.05]})
        with pytest.raises(ValueError, match="min_reads"):
            validate_config({'filtering': {'min_reads': 3}})

    def test_valid(self):
        validate_config({
            'thresholds': [0.01, 0.05],
            'pvalue_threshold': None,
            'floor': 1e-300,
            'workers': 4,
            'filtering': {'min_count': 0, 'min_group_size': 2, 'min_cells': 5},
        })


class TestRunConfig:

    def test_defaults(self):
        config = RunConfig.from_dict({})
        assert config.thresholds == [0.01, 0.05, 0.1]
        assert config.filtering == FilterConfig()

    def test_from_dict(self):
        config = RunConfig.from_dict({'thresholds': [0.1], 'filtering': {'min_cells': 25}})
        assert config.thresholds == [0.1]
        assert config.filtering.min_cells == 25
        assert config.filtering.min_count == 10

    def test_to_dict_nested(self):
        assert RunConfig().to_dict()['filtering'] == {
            'min_count': 10, 'min_group_size': 3, 'min_cells': 10,
        }


class TestMergeConfig:

    def test_config_beats_default(self, default_args):
        merged = merge_config_with_args(
            {'workers': 4, 'filtering': {'min_cells': 30}}, default_args, []
        )
        assert merged.workers == 4
        assert merged.min_cells == 30
        assert default_args.workers == 1

    def test_explicit_flag_wins(self, default_args):
        default_args.workers = 2
        merged = merge_config_with_args({'workers': 4}, default_args, ["--workers", "2"])
        assert merged.workers == 2

    def test_short_and_equals_forms(self, default_args):
        default_args.workers = 2
        default_args.min_count = 3
        merged = merge_config_with_args(
            {'workers': 4, 'filtering': {'min_count': 20}},
            default_args,
            ["-j", "2", "--min-count=3"],
        )
        assert merged.workers == 2
        assert merged.min_count == 3

    def test_null_disables_raw_tier(self, default_args):
        merged = merge_config_with_args({'pvalue_threshold': None}, default_args, [])
        assert merged.pvalue_threshold is None

    def test_explicit_raw_threshold_beats_null(self, default_args):
        default_args.pvalue_threshold = 0.01
        merged = merge_config_with_args(
            {'pvalue_threshold': None}, default_args, ["--pvalue-threshold", "0.01"]
        )
        assert merged.pvalue_threshold == 0.01

    def test_no_pvalue_tier_flag_is_explicit(self, default_args):
        default_args.pvalue_threshold = None
        merged = merge_config_with_args(
            {'pvalue_threshold': 0.1}, default_args, ["--no-pvalue-tier"]
        )
        assert merged.pvalue_threshold is None

    def test_options_absent_from_command_ignored(self, default_args):
        del default_args.min_cells
        merged = merge_config_with_args({'filtering': {'min_cells': 30}}, default_args, [])
        assert not hasattr(merged, 'min_cells')

    def test_explicit_arg_names(self):
        assert explicit_arg_names(["--pvalue-threshold", "0.1", "--plots", "x.tsv"]) == {
            'pvalue_threshold', 'plots',
        }
        assert explicit_arg_names(["--no-pvalue-tier"]) == {'pvalue_threshold'}
        assert explicit_arg_names(None) == set()
