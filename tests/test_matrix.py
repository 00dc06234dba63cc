import pytest

from gateci.dsl import job, sh
from gateci.errors import ConfigurationError
from gateci.matrix import coordinates, expand, render, validate_matrix


def test_two_by_three_matrix_gives_six_ordered_instances():
    j = job(
        "test",
        sh("test ${{ matrix.os }}", "cargo test --target ${{ matrix.os }}"),
        matrix={"os": ["linux", "macos"], "toolchain": ["stable", "beta", "nightly"]},
    )
    instances = expand(j)

    assert len(instances) == 6
    assert len({i.instance_id for i in instances}) == 6
    assert [i.index for i in instances] == list(range(6))
    assert instances[0].coordinate == (("os", "linux"), ("toolchain", "stable"))
    assert instances[1].coordinate == (("os", "linux"), ("toolchain", "beta"))
    assert instances[3].coordinate == (("os", "macos"), ("toolchain", "stable"))
    assert instances[5].instance_id == "test (os=macos, toolchain=nightly)"


def test_zero_length_axis_gives_no_instances():
    j = job("full", sh("t", "true"), matrix={"os": ["linux"], "arch": []})
    assert coordinates(j.matrix) == []
    assert expand(j) == []


def test_no_matrix_gives_single_instance():
    instances = expand(job("lint", sh("l", "ruff check ."), env={"A": "1"}), {"CI": "true"})
    assert len(instances) == 1
    inst = instances[0]
    assert inst.coordinate == ()
    assert inst.instance_id == "lint"
    assert inst.env_dict == {"A": "1", "CI": "true"}


def test_placeholders_and_matrix_env():
    j = job(
        "full",
        sh("test on ${{ matrix.os }}", "echo ${{matrix.os}}", cwd="build/${{ matrix.os }}"),
        matrix={"os": ["windows-latest"]},
        env={"TARGET": "${{ matrix.os }}", "CARGO_INCREMENTAL": "0"},
        continue_on_error=True,
    )
    (inst,) = expand(j, {"CARGO_INCREMENTAL": "1"})
    step = inst.steps[0]
    assert step.name == "test on windows-latest"
    assert step.run == "echo windows-latest"
    assert step.cwd == "build/windows-latest"
    # job env overrides workflow env; matrix values are exported
    assert inst.env_dict == {
        "CARGO_INCREMENTAL": "0",
        "TARGET": "windows-latest",
        "MATRIX_OS": "windows-latest",
    }
    assert inst.continue_on_error is True


def test_render_leaves_other_expressions_alone():
    assert render("${{ github.ref }} ${{ matrix.v }}", {"v": 3}) == "${{ github.ref }} 3"
    assert render(None, {}) is None


@pytest.mark.parametrize(
    "matrix, message",
    [
        ({"os": "linux"}, "must be a list"),
        ({"bad axis": ["x"]}, "Invalid matrix axis"),
        ({"os": [{"name": "linux"}]}, "non-scalar"),
        ({"os": ["linux", "linux"]}, "duplicate"),
        ({"v": [1, "1"]}, "duplicate"),
        ({"flag": [True, "True"]}, "duplicate"),
        ({"a-b": ["x"], "a_b": ["y"]}, "both export MATRIX_A_B"),
        ({"os": ["linux"], "OS": ["macos"]}, "both export MATRIX_OS"),
    ],
)
def test_malformed_axes_are_rejected(matrix, message):
    j = job("x", sh("t", "true"))
    j.matrix = matrix
    with pytest.raises(ConfigurationError, match=message):
        validate_matrix(j)


def test_placeholder_for_undefined_axis_is_rejected():
    j = job("x", sh("t", "echo ${{ matrix.python }}"), matrix={"os": ["linux"]})
    with pytest.raises(ConfigurationError, match="undefined matrix axis 'python'") as info:
        validate_matrix(j)
    assert info.value.job == "x"


def test_step_env_placeholders_are_rendered():
    j = job(
        "test",
        sh("t", "cargo test", env={
            "RUSTFLAGS": "--target ${{ matrix.target }}",
            "CARGO_INCREMENTAL": 0,
        }),
        sh("u", "true"),
        matrix={"target": ["x86_64", "aarch64"]},
    )
    validate_matrix(j)
    first, second = expand(j)
    assert first.steps[0].env_dict == {"RUSTFLAGS": "--target x86_64", "CARGO_INCREMENTAL": "0"}
    assert second.steps[0].env_dict["RUSTFLAGS"] == "--target aarch64"
    assert first.steps[1].env_dict == {}
    # step variables never leak into the instance env
    assert "RUSTFLAGS" not in first.env_dict


def test_step_env_placeholder_for_undefined_axis_is_rejected():
    j = job("x", sh("t", "true", env={"PY": "${{ matrix.python }}"}), matrix={"os": ["linux"]})
    with pytest.raises(ConfigurationError, match="undefined matrix axis 'python'"):
        validate_matrix(j)
