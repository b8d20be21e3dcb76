import numpy as np
import pytest

from kiss_matcher import main as cli
from kiss_matcher.core.point_cloud import PointCloudLoader, PointCloudWriter
from kiss_matcher.core.solvers.registration import rotation_error_deg


def parse_printed_matrix(text):
    values = text.replace("[", " ").replace("]", " ").split()
    return np.array(values, dtype=float).reshape(4, 4)


@pytest.fixture(autouse=True)
def keep_test_logging(monkeypatch):
    # Handler configuration would detach pytest's log capture
    monkeypatch.setattr(cli, "setup_logging", lambda level=None, log_file=None: None)


@pytest.fixture
def cloud_files(tmp_path, scene, cell_aligned_transform):
    source, target = scene(*cell_aligned_transform)
    source_path = PointCloudWriter.save_pcd_ascii(tmp_path / "source.pcd", source)
    target_path = PointCloudWriter.save_pcd_ascii(tmp_path / "target.pcd", target)
    return source_path, target_path


def test_registers_and_saves_warped_cloud(cloud_files, cell_aligned_transform, capsys):
    rotation, translation = cell_aligned_transform
    source_path, target_path = cloud_files

    exit_code = cli.main([str(source_path), str(target_path), "0.2", "--save-warped"])

    assert exit_code == 0
    transformation = parse_printed_matrix(capsys.readouterr().out)
    assert rotation_error_deg(transformation[:3, :3], rotation) < 1.0
    np.testing.assert_allclose(transformation[:3, 3], translation, atol=0.03)
    np.testing.assert_allclose(transformation[3], [0.0, 0.0, 0.0, 1.0])

    warped_path = source_path.parent / "source_warped.pcd"
    assert warped_path.is_file()
    assert len(PointCloudLoader.load_file(warped_path)) == len(PointCloudLoader.load_file(source_path))


def test_yaw_augmentation_is_undone(cloud_files, cell_aligned_transform, capsys):
    rotation, _ = cell_aligned_transform
    source_path, target_path = cloud_files

    # Source turned by -90 degrees leaves a half turn to recover
    exit_code = cli.main([str(source_path), str(target_path), "0.2", "-90"])

    assert exit_code == 0
    transformation = parse_printed_matrix(capsys.readouterr().out)
    assert rotation_error_deg(transformation[:3, :3], rotation @ rotation) < 1.0


def test_degenerate_input_exit_code(tmp_path):
    sparse = np.array([[float(i), 0.0, -3.0] for i in range(10)])
    path = PointCloudWriter.save_pcd_ascii(tmp_path / "sparse.pcd", sparse)

    assert cli.main([str(path), str(path), "0.1"]) == cli.EXIT_DEGENERATE


def test_missing_file_exit_code(tmp_path):
    missing = str(tmp_path / "missing.pcd")

    assert cli.main([missing, missing, "0.1"]) == cli.EXIT_ERROR


def test_invalid_resolution_exit_code(cloud_files):
    source_path, target_path = cloud_files

    assert cli.main([str(source_path), str(target_path), "-1"]) == cli.EXIT_ERROR
