# tests/engine/test_command.py
"""Tests for engine command-line construction."""

from pathlib import Path

import pytest

from ilastik_bridge.contracts import SecondaryInputKind
from ilastik_bridge.engine.command import (
    InvocationSpec,
    build_invocation,
    compression_level_for,
    secondary_flag_for,
)


def _build(kind: SecondaryInputKind) -> InvocationSpec:
    return build_invocation(
        executable_path=Path("/opt/ilastik/run_ilastik.sh"),
        project_file=Path("/projects/cells.ilp"),
        raw_path=Path("/scratch/a_raw.h5"),
        secondary_path=Path("/scratch/a_secondary.h5"),
        secondary_kind=kind,
        output_path=Path("/scratch/a_output.h5"),
    )


class TestCompressionPolicy:
    """Compression level derived from the secondary input kind."""

    def test_probabilities_uncompressed(self) -> None:
        assert compression_level_for(SecondaryInputKind.PROBABILITIES) == 0

    def test_segmentation_fully_compressed(self) -> None:
        assert compression_level_for(SecondaryInputKind.SEGMENTATION) == 9

    def test_spec_exposes_same_level(self) -> None:
        assert _build(SecondaryInputKind.SEGMENTATION).compression_level == 9
        assert _build(SecondaryInputKind.PROBABILITIES).compression_level == 0


class TestArguments:
    """Argument list snapshots per secondary kind."""

    def test_probabilities_arguments(self) -> None:
        assert _build(SecondaryInputKind.PROBABILITIES).arguments() == [
            "--headless",
            "--project=/projects/cells.ilp",
            "--output_filename_format=/scratch/a_output.h5",
            "--output_format=hdf5",
            "--output_axis_order=tzyxc",
            "--raw_data=/scratch/a_raw.h5",
            "--prediction_maps=/scratch/a_secondary.h5",
        ]

    def test_segmentation_arguments(self) -> None:
        arguments = _build(SecondaryInputKind.SEGMENTATION).arguments()

        assert arguments[-1] == "--segmentation_image=/scratch/a_secondary.h5"
        assert not any(a.startswith("--prediction_maps") for a in arguments)

    def test_probabilities_never_pass_segmentation_flag(self) -> None:
        arguments = _build(SecondaryInputKind.PROBABILITIES).arguments()

        assert not any(a.startswith("--segmentation_image") for a in arguments)

    @pytest.mark.parametrize(
        ("kind", "flag"),
        [
            (SecondaryInputKind.PROBABILITIES, "--prediction_maps"),
            (SecondaryInputKind.SEGMENTATION, "--segmentation_image"),
        ],
    )
    def test_secondary_flag_for(self, kind: SecondaryInputKind, flag: str) -> None:
        assert secondary_flag_for(kind) == flag

    def test_command_line_starts_with_executable(self) -> None:
        spec = _build(SecondaryInputKind.PROBABILITIES)

        assert spec.command_line() == ["/opt/ilastik/run_ilastik.sh", *spec.arguments()]


class TestBuildInvocation:
    """Construction details."""

    def test_relative_project_made_absolute(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)

        spec = build_invocation(
            executable_path=Path("/opt/ilastik/run_ilastik.sh"),
            project_file=Path("cells.ilp"),
            raw_path=Path("/scratch/r.h5"),
            secondary_path=Path("/scratch/s.h5"),
            secondary_kind=SecondaryInputKind.PROBABILITIES,
            output_path=Path("/scratch/o.h5"),
        )

        assert spec.project_file == Path.cwd() / "cells.ilp"
        assert f"--project={Path.cwd() / 'cells.ilp'}" in spec.arguments()

    def test_build_is_deterministic(self) -> None:
        assert _build(SecondaryInputKind.SEGMENTATION) == _build(SecondaryInputKind.SEGMENTATION)

    def test_spec_is_immutable(self) -> None:
        spec = _build(SecondaryInputKind.SEGMENTATION)

        with pytest.raises(AttributeError):
            spec.output_path = Path("/elsewhere.h5")  # type: ignore[misc]

    def test_fixed_axis_order(self) -> None:
        assert _build(SecondaryInputKind.PROBABILITIES).axis_order == "tzyxc"
