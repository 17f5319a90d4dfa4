from __future__ import annotations

from pathlib import Path

from click.testing import CliRunner

from unipatch.cli import main
from tests.helpers import read_file, write_file


SCRIPT = "Assets/Scripts/Player.cs"
PLAYER = "public class Player\n{\n    int hp = 10;\n}\n"
HP_DIFF = "@@ -3 +3 @@\n-    int hp = 10;\n+    int hp = 20;\n"


def _invoke(*args, input=None):
    return CliRunner().invoke(main, list(args), input=input, catch_exceptions=False)


def test_diff_prints_unified_diff(unity_root: Path) -> None:
    a = write_file(unity_root, "a.cs", "x\n")
    b = write_file(unity_root, "b.cs", "y\n")
    result = _invoke("diff", str(a), str(b), "-U", "0", "--project", str(unity_root))
    assert result.exit_code == 0
    assert result.output.splitlines() == [f"--- {a}", f"+++ {b}", "@@ -1 +1 @@", "-x", "+y"]


def test_diff_identical_prints_nothing(unity_root: Path) -> None:
    a = write_file(unity_root, "a.cs", "x\n")
    result = _invoke("diff", str(a), str(a), "--project", str(unity_root))
    assert result.exit_code == 0
    assert result.output == ""


def test_apply_writes_file(unity_root: Path) -> None:
    write_file(unity_root, SCRIPT, PLAYER)
    diff = write_file(unity_root, "hp.diff", HP_DIFF)
    result = _invoke("apply", SCRIPT, str(diff), "--project", str(unity_root))
    assert result.exit_code == 0
    assert f"Updated {SCRIPT}" in result.output
    assert read_file(unity_root, SCRIPT) == PLAYER.replace("10", "20")


def test_apply_from_stdin_dry_run(unity_root: Path) -> None:
    write_file(unity_root, SCRIPT, PLAYER)
    result = _invoke("apply", SCRIPT, "-", "--dry-run", "--project", str(unity_root), input=HP_DIFF)
    assert result.exit_code == 0
    assert f"Dry run: {SCRIPT} would change" in result.output
    assert read_file(unity_root, SCRIPT) == PLAYER


def test_apply_failure_exits_nonzero(unity_root: Path) -> None:
    write_file(unity_root, SCRIPT, PLAYER.replace("10", "15"))
    diff = write_file(unity_root, "hp.diff", HP_DIFF)
    result = _invoke("apply", SCRIPT, str(diff), "--project", str(unity_root))
    assert result.exit_code == 1
    assert "Patch application failed. No changes were applied." in result.output
    assert read_file(unity_root, SCRIPT) == PLAYER.replace("10", "15")


def test_check_reports_status(unity_root: Path) -> None:
    write_file(unity_root, SCRIPT, PLAYER)
    diff = write_file(unity_root, "hp.diff", HP_DIFF)
    ok = _invoke("check", SCRIPT, str(diff), "--project", str(unity_root))
    assert ok.exit_code == 0
    assert "applies cleanly" in ok.output

    write_file(unity_root, SCRIPT, "")
    stale = _invoke("check", SCRIPT, str(diff), "--project", str(unity_root))
    assert stale.exit_code == 1
    assert "does not apply" in stale.output


def test_patch_command(unity_root: Path) -> None:
    write_file(unity_root, SCRIPT, PLAYER)
    patch = write_file(
        unity_root,
        "change.patch",
        f"--- a/{SCRIPT}\n+++ b/{SCRIPT}\n" + HP_DIFF
        + "--- /dev/null\n+++ b/Assets/Scripts/Enemy.cs\n@@ -0,0 +1 @@\n+public class Enemy {}\n",
    )
    result = _invoke("patch", str(patch), "--project", str(unity_root))
    assert result.exit_code == 0
    assert result.output.splitlines()[0] == "Applied patch successfully."
    assert read_file(unity_root, "Assets/Scripts/Enemy.cs") == "public class Enemy {}\n"
    assert "hp = 20" in read_file(unity_root, SCRIPT)


def test_patch_command_refuses_unsafe_paths(unity_root: Path) -> None:
    patch = write_file(
        unity_root,
        "evil.patch",
        "--- /dev/null\n+++ b/../outside.cs\n@@ -0,0 +1 @@\n+x\n",
    )
    result = _invoke("patch", str(patch), "--project", str(unity_root))
    assert result.exit_code == 1
    assert "escapes project root" in result.output
    assert not (unity_root.parent / "outside.cs").exists()


def test_unreadable_target_fails_cleanly(unity_root: Path) -> None:
    target = unity_root / SCRIPT
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(b"\xff\xfepublic class Player {}\n")
    diff = write_file(unity_root, "hp.diff", HP_DIFF)

    applied = _invoke("apply", SCRIPT, str(diff), "--project", str(unity_root))
    assert applied.exit_code == 1
    assert "Error: 'utf-8' codec can't decode" in applied.output

    checked = _invoke("check", SCRIPT, str(diff), "--project", str(unity_root))
    assert checked.exit_code == 1
    assert "Error: 'utf-8' codec can't decode" in checked.output
    assert target.read_bytes().startswith(b"\xff\xfe")
