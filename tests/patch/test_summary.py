from unipatch.patch import (
    ApplyOptions,
    FileApplyStatus,
    FileResult,
    PatchError,
    PatchNotFoundError,
    PatchSetResult,
    PatchSpec,
    apply_patches,
    check_unified_diff,
)
from unipatch.patch.summary import (
    format_error,
    format_patch_result,
    format_patch_set,
    format_validation_report,
)


def test_format_error_with_hint():
    e = PatchNotFoundError(
        "No line matches exact pattern 'Jump'",
        patch_index=1,
        filename="Assets/Player.cs",
        line=4,
        hint="Re-read the file.",
    )
    assert format_error(e).splitlines() == [
        "Patch application failed. No changes were applied.",
        "Errors:",
        "* Assets/Player.cs:4: patch #2: No line matches exact pattern 'Jump'",
        "  Hint: Re-read the file.",
    ]


def test_format_patch_result_applied():
    result = apply_patches("a\nb\nc\n", [PatchSpec.at_lines(2, 3, new_content="x\ny\nz")])
    text = format_patch_result("Assets/A.cs", result)
    assert text.splitlines() == [
        "Updated Assets/A.cs: +3 -2 lines (net +1).",
        "* #1: lines 2-3 (+3 -2)",
    ]


def test_format_patch_result_dry_run_shows_excerpt():
    result = apply_patches(
        "a\nb\n", [PatchSpec.at_lines(2, 1, new_content="x")], ApplyOptions(dry_run=True)
    )
    text = format_patch_result("Assets/A.cs", result)
    lines = text.splitlines()
    assert lines[0] == "Dry run: Assets/A.cs would change, +1 -0 lines (net +1). Nothing was written."
    assert lines[1] == "* #1: insert before line 2 (+1 -0)"
    assert "    2 + x" in lines


def test_format_patch_result_unchanged():
    result = apply_patches("a\n", [PatchSpec.at_lines(1, new_content="a")])
    assert format_patch_result("Assets/A.cs", result).startswith("No changes to Assets/A.cs.")


def test_format_validation_report():
    clean = check_unified_diff("a\n", "@@ -1 +1 @@\n-a\n+b\n")
    assert format_validation_report("Assets/A.cs", clean) == (
        "Diff is valid and applies cleanly to Assets/A.cs."
    )
    stale = check_unified_diff("z\n", "@@ -1 +1 @@\n-a\n+b\n")
    lines = format_validation_report("Assets/A.cs", stale).splitlines()
    assert lines[0] == "Diff is valid but does not apply to Assets/A.cs."
    assert lines[1] == "Conflicts:"
    assert lines[2].startswith("* hunk #1 (line 1): ")
    broken = check_unified_diff("a\n", "@@ -1,2 +1 @@\n-a\n+b\n")
    assert format_validation_report("Assets/A.cs", broken).startswith("Diff is malformed.\nErrors:")


def test_format_patch_set_success():
    result = PatchSetResult(
        success=True,
        files=[
            FileResult(path="Assets/B.cs", status=FileApplyStatus.Update),
            FileResult(path="Assets/A.cs", status=FileApplyStatus.Create),
        ],
        written=["Assets/B.cs", "Assets/A.cs"],
    )
    assert format_patch_set(result).splitlines() == [
        "Applied patch successfully.",
        "Added files:",
        "* Assets/A.cs",
        "Updated files:",
        "* Assets/B.cs",
    ]
    assert format_patch_set(result, dry_run=True).splitlines()[:2] == [
        "Dry run: patch applies cleanly.",
        "Would add files:",
    ]


def test_format_patch_set_failure():
    result = PatchSetResult(
        success=False,
        files=[
            FileResult(path="Assets/A.cs", status=FileApplyStatus.Update),
            FileResult(
                path="Assets/B.cs",
                status=FileApplyStatus.Failed,
                error=PatchError(msg="hunk does not match", filename="Assets/B.cs"),
            ),
        ],
    )
    assert format_patch_set(result).splitlines() == [
        "Patch application failed. No changes were applied.",
        "Please regenerate the diff for these files:",
        "* Assets/B.cs",
        "Errors:",
        "* Assets/B.cs: hunk does not match",
    ]


def test_format_patch_set_partial():
    result = PatchSetResult(
        success=False,
        files=[
            FileResult(path="Assets/A.cs", status=FileApplyStatus.Update),
            FileResult(
                path="Assets/B.cs",
                status=FileApplyStatus.Failed,
                error=PatchError(msg="boom", filename="Assets/B.cs"),
            ),
        ],
        written=["Assets/A.cs"],
    )
    lines = format_patch_set(result).splitlines()
    assert lines[:3] == [
        "Patch application completed with errors. Summary:",
        "Written files:",
        "* Assets/A.cs",
    ]
