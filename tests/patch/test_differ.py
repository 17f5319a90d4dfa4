import pytest

from unipatch.patch import apply_unified_diff, create_diff, parse_diff
from unipatch.patch.differ import NO_EOL_MARKER


def test_single_line_change():
    assert create_diff("x\n", "y\n", 1) == (
        "--- original\n"
        "+++ modified\n"
        "@@ -1 +1 @@\n"
        "-x\n"
        "+y\n"
    )


def test_identical_inputs_give_empty_diff():
    assert create_diff("a\nb\n", "a\nb\n") == ""
    assert create_diff("", "") == ""


def test_negative_context_rejected():
    with pytest.raises(ValueError):
        create_diff("a\n", "b\n", -1)


def test_file_labels():
    diff = create_diff("a\n", "b\n", from_file="a/Assets/P.cs", to_file="b/Assets/P.cs")
    assert diff.splitlines()[:2] == ["--- a/Assets/P.cs", "+++ b/Assets/P.cs"]


def test_missing_final_newline_is_marked():
    diff = create_diff("a\n", "a")
    assert diff.endswith("-a\n+a\n" + NO_EOL_MARKER + "\n")


def test_only_changed_lines_are_marked():
    diff = create_diff("a\nb\nc\n", "a\nc\n")
    body = diff.splitlines()[3:]
    assert body == [" a", "-b", " c"]


def test_nearby_changes_share_a_hunk():
    original = "".join(f"l{i}\n" for i in range(1, 11))
    modified = original.replace("l2\n", "L2\n").replace("l9\n", "L9\n")
    merged = create_diff(original, modified, 3)
    assert sum(1 for l in merged.splitlines() if l.startswith("@@")) == 1
    assert "@@ -1,10 +1,10 @@" in merged
    split = create_diff(original, modified, 2)
    assert sum(1 for l in split.splitlines() if l.startswith("@@")) == 2


def test_zero_context_insertion_header():
    assert create_diff("a\n", "z\na\n", 0).splitlines()[2:] == ["@@ -0,0 +1 @@", "+z"]


def test_crlf_file_keeps_a_carriage_return_in_the_diff():
    assert create_diff("b\r\n", "a\nb\r\n", 0) == (
        "--- original\n"
        "+++ modified\n"
        "@@ -1 +1,2 @@\n"
        "+a\n"
        " b\r\n"
    )


def test_bom_file_keeps_the_bom_in_the_diff():
    diff = create_diff("\ufeffa\nb\nc\n", "\ufeffa\nb\nc\nd\n", 0)
    assert diff.splitlines()[2:] == ["@@ -1,3 +1,4 @@", " \ufeffa", " b", " c", "+d"]


def test_generated_diff_parses_strictly():
    original = "using UnityEngine;\n\npublic class A {\n    void Start() {}\n}\n"
    modified = "using UnityEngine;\n\npublic class A : MonoBehaviour {\n    void Start() {}\n    void Update() {}\n}\n"
    hunks = parse_diff(create_diff(original, modified))
    assert len(hunks) == 1
    assert hunks[0].old_lines() == original.splitlines()


ROUND_TRIP_CASES = [
    ("", "a\n"),
    ("a\n", ""),
    ("a\nb\nc\n", "a\nB\nc\n"),
    ("x", "y"),
    ("a\nb", "a\nb\n"),
    ("a\nb\n", "a\nb"),
    ("a\r\nb\r\n", "a\r\nc\r\n"),
    ("a\r\nb\n", "a\r\nb\nc\n"),
    ("\ufeffa\nb\n", "\ufeffa\nc\n"),
    ("a\na\na\nb\n", "a\nb\na\na\n"),
    ("b\r\n", "a\nb\r\n"),
    ("\ufeff", "a\n\ufeff"),
    ("a\r\nb\r\nc\r\n", "a\r\nb\r\nc\r\nd\n"),
    ("\ufeffa\nb\nc\n", "\ufeffa\nb\nc\nd\n"),
    ("x\r\ny", "x\r\ny\nz"),
    (
        "one\ntwo\nthree\nfour\nfive\nsix\nseven\n",
        "zero\none\ntwo\nthree\nFOUR\nfive\nsix\nseven\neight\n",
    ),
]


@pytest.mark.parametrize("context_lines", [0, 1, 3])
@pytest.mark.parametrize("original,modified", ROUND_TRIP_CASES)
def test_round_trip(original, modified, context_lines):
    diff = create_diff(original, modified, context_lines)
    assert apply_unified_diff(original, diff).text == modified
