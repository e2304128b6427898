"""
End-to-end tests of the pbsummary command line.
"""

from __future__ import annotations

import json

import numpy as np
import pandas as pd
import pytest
import yaml

from pbsummary import __version__
from pbsummary.cli import main

from conftest import N_DE_GENES


@pytest.fixture
def deg_inputs(tmp_path, count_matrix):
    counts = pd.DataFrame(
        np.asarray(count_matrix.counts, dtype=int),
        index=pd.Index(count_matrix.feature_ids, name="gene_id"),
        columns=count_matrix.cell_ids,
    )
    counts_path = tmp_path / "counts.tsv.gz"
    counts.to_csv(counts_path, sep="\t")

    meta_path = tmp_path / "cells.tsv"
    count_matrix.cell_metadata.to_csv(meta_path, sep="\t")

    names_path = tmp_path / "features.tsv"
    names_path.write_text("gene_id\tgene_name\nENSG00000\tTP53\n")
    return counts_path, meta_path, names_path


@pytest.fixture
def abundance_inputs(tmp_path, cell_metadata):
    path = tmp_path / "cells.csv"
    cell_metadata.to_csv(path)
    return path


def _deg_argv(inputs, out_dir, *extra):
    counts_path, meta_path, names_path = inputs
    return [
        "deg",
        "--counts", str(counts_path),
        "--metadata", str(meta_path),
        "--names", str(names_path),
        "--group-cols", "leiden_0.5", "leiden_0.1",
        "--contrast", "KO", "WT",
        "--output", str(out_dir),
        *extra,
    ]


class TestMain:

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "deg" in capsys.readouterr().out

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["--version"])
        assert exc.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_invalid_threshold_rejected(self, tmp_path):
        with pytest.raises(SystemExit) as exc:
            main(["abundance", "--metadata", "x.tsv", "--cluster-cols", "c",
                  "--control", "WT", "--output", str(tmp_path), "--thresholds", "1.5"])
        assert exc.value.code == 2


class TestDegCommand:

    def test_end_to_end(self, tmp_path, deg_inputs):
        out_dir = tmp_path / "deg"
        assert main(_deg_argv(deg_inputs, out_dir, "--plots")) == 0

        summary = pd.read_csv(out_dir / "leiden_0.5_summary.tsv", sep="\t")
        assert summary['group_id'].astype(str).tolist() == ["0", "1"]
        assert {'padj_0_01', 'padj_0_05_up', 'padj_0_1_down', 'pvalue_0_05'} <= set(summary.columns)
        assert summary.loc[0, 'padj_0_05_up'] >= N_DE_GENES - 1
        assert summary.loc[0, 'min_count'] == 10

        assert (out_dir / "leiden_0.1_summary.tsv").exists()
        assert (out_dir / "leiden_0.5_failed_groups.tsv").exists()
        assert (out_dir / "plots" / "leiden_0.5_tiers.png").exists()

        details = pd.read_csv(out_dir / "details" / "leiden_0.5" / "0.tsv", sep="\t")
        assert details.loc[details['feature_id'] == "ENSG00000", 'display_name'].item() == "TP53"

        params = json.loads((out_dir / "parameters.json").read_text())
        assert params['command'] == "deg"
        assert params['contrast'] == ["KO", "WT"]
        assert params['settings']['thresholds'] == [0.01, 0.05, 0.1]
        assert params['results']['leiden_0.5']['n_groups'] == 2

    def test_missing_column_fails_before_testing(self, tmp_path, deg_inputs):
        out_dir = tmp_path / "deg"
        argv = _deg_argv(deg_inputs, out_dir) + ["--sample-col", "hashtag"]
        assert main(argv) == 1
        assert not (out_dir / "leiden_0.5_summary.tsv").exists()

    def test_unknown_contrast_level(self, tmp_path, deg_inputs):
        argv = _deg_argv(deg_inputs, tmp_path / "deg")
        argv[argv.index("KO")] = "HET"
        assert main(argv) == 1

    def test_config_file(self, tmp_path, deg_inputs):
        config = tmp_path / "run.yaml"
        config.write_text(yaml.safe_dump({
            'thresholds': [0.05],
            'pvalue_threshold': 0.01,
            'filtering': {'min_count': 5},
        }))
        out_dir = tmp_path / "deg"
        argv = _deg_argv(deg_inputs, out_dir, "--config", str(config), "--min-count", "20")
        assert main(argv) == 0

        summary = pd.read_csv(out_dir / "leiden_0.5_summary.tsv", sep="\t")
        assert 'padj_0_05' in summary.columns
        assert 'padj_0_01' not in summary.columns
        assert 'pvalue_0_01' in summary.columns
        # explicit flag beats the config file
        assert summary.loc[0, 'min_count'] == 20

    def test_raw_tier_disabled(self, tmp_path, deg_inputs):
        out_dir = tmp_path / "deg"
        assert main(_deg_argv(deg_inputs, out_dir, "--no-pvalue-tier")) == 0
        summary = pd.read_csv(out_dir / "leiden_0.5_summary.tsv", sep="\t")
        assert not any(c.startswith("pvalue_") for c in summary.columns)
        assert 'padj_0_05' in summary.columns

        params = json.loads((out_dir / "parameters.json").read_text())
        assert params['settings']['pvalue_threshold'] is None

    def test_bad_config(self, tmp_path, deg_inputs):
        config = tmp_path / "run.yaml"
        config.write_text(yaml.safe_dump({'thresholds': [2]}))
        argv = _deg_argv(deg_inputs, tmp_path / "deg", "--config", str(config))
        assert main(argv) == 1


class TestAbundanceCommand:

    def test_end_to_end(self, tmp_path, abundance_inputs):
        out_dir = tmp_path / "da"
        argv = [
            "abundance",
            "--metadata", str(abundance_inputs),
            "--cluster-cols", "cluster",
            "--control", "WT",
            "--batch-col", "lane",
            "--tabulate", "sample", "lane",
            "--output", str(out_dir),
            "-j", "2",
        ]
        assert main(argv) == 0

        counts = pd.read_csv(out_dir / "cluster_cell_counts.tsv", sep="\t", index_col=0)
        assert counts.shape == (12, 4)
        props = pd.read_csv(out_dir / "cluster_proportions.tsv", sep="\t", index_col=0)
        np.testing.assert_allclose(props.sum(axis=1), 1.0)
        assert (out_dir / "sample_by_lane_counts.tsv").exists()

        propeller = pd.read_csv(out_dir / "cluster_propeller_summary.tsv", sep="\t")
        assert propeller['group_id'].tolist() == ["KO1_vs_WT", "KO2_vs_WT"]
        assert (propeller['status'] == "ok").all()
        assert propeller.loc[0, 'total_features'] == 4

        mixed = pd.read_csv(out_dir / "cluster_mixed_summary.tsv", sep="\t")
        assert mixed['group_id'].tolist() == ["A", "B", "C", "D"]
        assert set(mixed['status']) <= {"ok", "degenerate", "failed"}

        details = pd.read_csv(out_dir / "details" / "cluster_propeller" / "KO1_vs_WT.tsv", sep="\t")
        assert details.loc[0, 'feature_id'] == "A"

        params = json.loads((out_dir / "parameters.json").read_text())
        assert params['settings']['workers'] == 2
        assert set(params['results']['cluster']) == {'propeller', 'mixed'}

    def test_missing_cluster_column(self, tmp_path, abundance_inputs):
        argv = [
            "abundance",
            "--metadata", str(abundance_inputs),
            "--cluster-cols", "leiden_0.5",
            "--control", "WT",
            "--output", str(tmp_path / "da"),
        ]
        assert main(argv) == 1

    def test_missing_metadata_file(self, tmp_path):
        argv = [
            "abundance",
            "--metadata", str(tmp_path / "absent.tsv"),
            "--cluster-cols", "cluster",
            "--control", "WT",
            "--output", str(tmp_path / "da"),
        ]
        assert main(argv) == 1
