#!/usr/bin/env python3
"""
End-to-end integration tests for the spatial linkage pipeline.

These tests verify the complete data flow from source layers to the
model estimates and maps using synthetic demo layers. Full runs execute
in-process against a temporary data tree; only read-only commands are run
through the CLI as a subprocess.
"""
from __future__ import annotations

import pytest
import subprocess
import sys
from pathlib import Path

import pandas as pd

# Mark all tests as integration and e2e
pytestmark = [pytest.mark.integration, pytest.mark.e2e]


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def pipeline_script(project_root):
    """Get the pipeline.py script path."""
    return project_root / 'src' / 'pipeline.py'


@pytest.fixture
def figures_dir(temp_data_dir, monkeypatch):
    """Redirect map output to the temp tree."""
    from stages import s06_maps
    monkeypatch.setattr(s06_maps, 'FIGURES_DIR', temp_data_dir['figures'])
    return temp_data_dir['figures']


# ============================================================
# HELPER FUNCTIONS
# ============================================================

def run_pipeline_command(project_root, *args, timeout=120):
    """Run a pipeline command and return the result."""
    cmd = [
        sys.executable,
        'src/pipeline.py',
        *args
    ]
    result = subprocess.run(
        cmd,
        cwd=project_root,
        capture_output=True,
        text=True,
        timeout=timeout
    )
    return result


# ============================================================
# PIPELINE AVAILABILITY TESTS
# ============================================================

class TestPipelineAvailable:
    """Tests that verify the pipeline is available and runnable."""

    def test_pipeline_script_exists(self, pipeline_script):
        """Test that pipeline.py exists."""
        assert pipeline_script.exists()

    def test_pipeline_help(self, project_root):
        """Test that the CLI starts and lists its commands."""
        result = run_pipeline_command(project_root, '--help')
        assert result.returncode == 0, result.stderr
        assert 'interpolate_surface' in result.stdout

    def test_list_stages_command(self, project_root):
        """Test that list_stages shows every stage."""
        result = run_pipeline_command(project_root, 'list_stages')
        assert result.returncode == 0, result.stderr
        for stage in ['s00_ingest', 's03_aggregate', 's06_maps']:
            assert stage in result.stdout


# ============================================================
# END-TO-END PIPELINE TESTS
# ============================================================

class TestPipelineE2E:
    """End-to-end tests for the complete pipeline."""

    @pytest.mark.slow
    def test_demo_pipeline_idw(self, temp_data_dir, figures_dir):
        """Demo layers run through every stage with IDW."""
        from pipeline import run_all

        run_all(demo=True, method='idw')

        work = temp_data_dir['data_work']
        for filename in ['linked.parquet', 'aggregated.parquet', 'surface.parquet',
                         'final.parquet', 'model_estimates.csv']:
            assert (work / filename).exists(), filename

        estimates = pd.read_csv(work / 'model_estimates.csv')
        assert estimates['term'].iloc[0] == 'const'
        assert (estimates['n_obs'] == 16).all()

        assert (figures_dir / 'map_surface.png').exists()
        assert (temp_data_dir['diagnostics'] / 'linkage_summary.csv').exists()

    @pytest.mark.slow
    def test_demo_pipeline_kriging(self, temp_data_dir, figures_dir):
        """Kriging run produces a surface and (when fitted) a variogram figure."""
        from pipeline import run_all
        from utils.helpers import load_data

        run_all(demo=True, method='kriging')

        final = load_data(temp_data_dir['data_work'] / 'final.parquet')
        assert final['traffic'].notna().all()
        if final['interpolator'].iloc[0] == 'kriging':
            assert (figures_dir / 'fig_variogram.png').exists()

    def test_stage_outputs_are_geoparquet(self, temp_data_dir):
        """Every spatial snapshot carries its CRS."""
        from stages import s00_ingest, s01_reproject
        from utils.helpers import load_data

        s00_ingest.main(demo=True, verbose=False)
        s01_reproject.main(verbose=False)

        snapshots = list(temp_data_dir['data_work'].glob('*_projected.parquet'))
        assert len(snapshots) == 5
        for path in snapshots:
            assert load_data(path).crs.to_epsg() == 27700
