import asyncio
from pathlib import Path

import pytest

from unipatch.project import Project
from unipatch.settings import Settings, ToolSpec, WorkspaceSettings
from unipatch.tools import get_tool
from tests.helpers import read_file, write_file


ENEMY = "Assets/Scripts/Enemy.cs"
ENEMY_TEXT = (
    "public class Enemy : MonoBehaviour\n"
    "{\n"
    "    void Update()\n"
    "    {\n"
    '        Debug.Log("tick");\n'
    '        Debug.Log("tock");\n'
    "    }\n"
    "}\n"
)


def make_tool(name, project):
    ToolClass = get_tool(name)
    assert ToolClass is not None, f"{name} tool should be registered"
    return ToolClass(project)


@pytest.mark.asyncio
async def test_update_script_diff_applies_patches(project, unity_root: Path):
    write_file(unity_root, ENEMY, ENEMY_TEXT)
    tool = make_tool("update_script_diff", project)

    resp = await tool.run(
        ToolSpec(name="update_script_diff"),
        {
            "path": ENEMY,
            "patches": [
                {"searchPattern": "Debug.Log", "occurrence": 2, "newContent": '        Debug.Log("TOCK");'},
                {"startLine": 3, "newContent": "    void LateUpdate()", "contextAfter": ["{"]},
            ],
        },
    )

    assert not resp.is_error
    assert resp.text.startswith(f"Updated {ENEMY}: +2 -2 lines (net +0).")
    text = read_file(unity_root, ENEMY)
    assert 'Debug.Log("TOCK");' in text
    assert "void LateUpdate()" in text


@pytest.mark.asyncio
async def test_update_script_diff_failure_writes_nothing(project, unity_root: Path):
    write_file(unity_root, ENEMY, ENEMY_TEXT)
    tool = make_tool("update_script_diff", project)

    resp = await tool.run(
        ToolSpec(name="update_script_diff"),
        {
            "path": ENEMY,
            "patches": [
                {"startLine": 1, "newContent": "public class Boss : MonoBehaviour"},
                {"searchPattern": "Debug.Log", "newContent": ""},
            ],
        },
    )

    assert resp.is_error
    assert "Patch application failed. No changes were applied." in resp.text
    assert "patch #2" in resp.text
    assert "occurrence" in resp.text
    assert read_file(unity_root, ENEMY) == ENEMY_TEXT


@pytest.mark.asyncio
async def test_update_script_diff_dry_run(project, unity_root: Path):
    write_file(unity_root, ENEMY, ENEMY_TEXT)
    tool = make_tool("update_script_diff", project)

    resp = await tool.run(
        ToolSpec(name="update_script_diff"),
        {
            "path": ENEMY,
            "dryRun": True,
            "patches": [{"oldContent": '        Debug.Log("tick");', "newContent": ""}],
        },
    )

    assert not resp.is_error
    assert resp.text.startswith(f"Dry run: {ENEMY} would change")
    assert '    5 -         Debug.Log("tick");' in resp.text
    assert read_file(unity_root, ENEMY) == ENEMY_TEXT


@pytest.mark.asyncio
async def test_update_script_diff_bad_arguments(project):
    tool = make_tool("update_script_diff", project)
    resp = await tool.run(ToolSpec(name="update_script_diff"), {"path": ENEMY, "patches": []})
    assert resp.is_error
    assert resp.text.startswith("Invalid arguments: patches")


@pytest.mark.asyncio
async def test_update_script_diff_rejects_paths_outside_roots(project, unity_root: Path):
    write_file(unity_root, "ProjectSettings/TagManager.asset", "tags\n")
    tool = make_tool("update_script_diff", project)
    resp = await tool.run(
        ToolSpec(name="update_script_diff"),
        {"path": "ProjectSettings/TagManager.asset", "patches": [{"startLine": 1, "newContent": "x"}]},
    )
    assert resp.is_error
    assert "outside the editable roots" in resp.text


@pytest.mark.asyncio
async def test_apply_diff_tool(project, unity_root: Path):
    write_file(unity_root, ENEMY, ENEMY_TEXT.replace("\n", "\r\n"))
    tool = make_tool("apply_diff", project)
    diff = (
        "--- a/Assets/Scripts/Enemy.cs\n"
        "+++ b/Assets/Scripts/Enemy.cs\n"
        "@@ -5,2 +5,2 @@\n"
        '         Debug.Log("tick");\n'
        '-        Debug.Log("tock");\n'
        '+        Debug.Log("tock!");\n'
    )

    resp = await tool.run(ToolSpec(name="apply_diff"), {"path": ENEMY, "diff": diff})

    assert not resp.is_error
    assert read_file(unity_root, ENEMY) == ENEMY_TEXT.replace("tock", "tock!").replace("\n", "\r\n")


@pytest.mark.asyncio
async def test_apply_diff_tool_reports_mismatch(project, unity_root: Path):
    write_file(unity_root, ENEMY, ENEMY_TEXT)
    tool = make_tool("apply_diff", project)
    diff = "@@ -5 +5 @@\n-        Debug.Log(\"tik\");\n+        Debug.Log(\"tick!\");\n"

    resp = await tool.run(ToolSpec(name="apply_diff"), {"path": ENEMY, "diff": diff})
    assert resp.is_error
    assert "does not match" in resp.text
    assert read_file(unity_root, ENEMY) == ENEMY_TEXT

    resp = await tool.run(ToolSpec(name="apply_diff"), {"path": ENEMY, "diff": diff, "fuzzy": 80})
    assert not resp.is_error
    assert "approximate match" in resp.text
    assert 'Debug.Log("tick!");' in read_file(unity_root, ENEMY)


@pytest.mark.asyncio
async def test_apply_diff_tool_backup(project, unity_root: Path):
    write_file(unity_root, ENEMY, ENEMY_TEXT)
    tool = make_tool("apply_diff", project)
    diff = "@@ -1 +1 @@\n-public class Enemy : MonoBehaviour\n+public class Boss : MonoBehaviour\n"

    resp = await tool.run(
        ToolSpec(name="apply_diff"), {"path": ENEMY, "diff": diff, "createBackup": True}
    )

    assert not resp.is_error
    backups = list((unity_root / "Assets" / "Scripts").glob("Enemy.cs.backup.*"))
    assert len(backups) == 1
    assert backups[0].read_bytes().decode("utf-8") == ENEMY_TEXT


@pytest.mark.asyncio
async def test_create_diff_tool(project, unity_root: Path):
    write_file(unity_root, ENEMY, ENEMY_TEXT)
    tool = make_tool("create_diff", project)

    resp = await tool.run(
        ToolSpec(name="create_diff"),
        {"originalPath": ENEMY, "modified": ENEMY_TEXT.replace("tick", "tack"), "contextLines": 0},
    )
    assert not resp.is_error
    assert resp.text.splitlines() == [
        f"--- {ENEMY}",
        "+++ modified",
        "@@ -5 +5 @@",
        '-        Debug.Log("tick");',
        '+        Debug.Log("tack");',
    ]

    same = await tool.run(ToolSpec(name="create_diff"), {"original": "a\n", "modified": "a\n"})
    assert same.text == "No differences."


@pytest.mark.asyncio
async def test_create_diff_tool_context_from_config(project):
    tool = make_tool("create_diff", project)
    original = "".join(f"{i}\n" for i in range(10))
    modified = original.replace("5\n", "five\n")
    resp = await tool.run(
        ToolSpec(name="create_diff", config={"context_lines": 1}),
        {"original": original, "modified": modified},
    )
    assert "@@ -5,3 +5,3 @@" in resp.text


@pytest.mark.asyncio
async def test_create_diff_tool_needs_one_source_per_side(project):
    tool = make_tool("create_diff", project)
    resp = await tool.run(
        ToolSpec(name="create_diff"),
        {"original": "a", "originalPath": ENEMY, "modified": "b"},
    )
    assert resp.is_error
    assert "exactly one of original or originalPath" in resp.text


@pytest.mark.asyncio
async def test_validate_diff_tool(project, unity_root: Path):
    write_file(unity_root, ENEMY, ENEMY_TEXT)
    tool = make_tool("validate_diff", project)

    good = "@@ -1 +1 @@\n-public class Enemy : MonoBehaviour\n+public class Boss : MonoBehaviour\n"
    resp = await tool.run(ToolSpec(name="validate_diff"), {"path": ENEMY, "diff": good})
    assert resp.text == f"Diff is valid and applies cleanly to {ENEMY}."

    stale = "@@ -1 +1 @@\n-public class Foe : MonoBehaviour\n+public class Boss : MonoBehaviour\n"
    resp = await tool.run(ToolSpec(name="validate_diff"), {"path": ENEMY, "diff": stale})
    assert resp.text.startswith(f"Diff is valid but does not apply to {ENEMY}.")
    assert read_file(unity_root, ENEMY) == ENEMY_TEXT


PATCH_SET = (
    "--- a/Assets/Scripts/Enemy.cs\n"
    "+++ b/Assets/Scripts/Enemy.cs\n"
    "@@ -1 +1 @@\n"
    "-public class Enemy : MonoBehaviour\n"
    "+public class Foe : MonoBehaviour\n"
    "--- /dev/null\n"
    "+++ b/Assets/Scripts/Spawner.cs\n"
    "@@ -0,0 +1 @@\n"
    "+public class Spawner : MonoBehaviour {}\n"
)


@pytest.mark.asyncio
async def test_apply_patch_tool(project, unity_root: Path):
    write_file(unity_root, ENEMY, ENEMY_TEXT)
    tool = make_tool("apply_patch", project)

    resp = await tool.run(ToolSpec(name="apply_patch"), {"patch": PATCH_SET})

    assert not resp.is_error
    assert resp.text.splitlines() == [
        "Applied patch successfully.",
        "Added files:",
        "* Assets/Scripts/Spawner.cs",
        "Updated files:",
        "* Assets/Scripts/Enemy.cs",
    ]
    assert read_file(unity_root, "Assets/Scripts/Spawner.cs") == "public class Spawner : MonoBehaviour {}\n"
    assert read_file(unity_root, ENEMY).startswith("public class Foe")


@pytest.mark.asyncio
async def test_apply_patch_tool_atomic_by_default(project, unity_root: Path):
    write_file(unity_root, ENEMY, ENEMY_TEXT.replace("Enemy", "Grunt"))
    tool = make_tool("apply_patch", project)

    resp = await tool.run(ToolSpec(name="apply_patch"), {"patch": PATCH_SET})

    assert resp.is_error
    assert resp.text.startswith("Patch application failed. No changes were applied.")
    assert "* Assets/Scripts/Enemy.cs" in resp.text
    assert not (unity_root / "Assets" / "Scripts" / "Spawner.cs").exists()


@pytest.mark.asyncio
async def test_apply_patch_tool_non_atomic_from_config(project, unity_root: Path):
    write_file(unity_root, ENEMY, ENEMY_TEXT.replace("Enemy", "Grunt"))
    tool = make_tool("apply_patch", project)

    resp = await tool.run(
        ToolSpec(name="apply_patch", config={"atomic": False, "continue_on_error": True}),
        {"patch": PATCH_SET},
    )

    assert resp.is_error
    assert resp.text.startswith("Patch application completed with errors. Summary:")
    assert (unity_root / "Assets" / "Scripts" / "Spawner.cs").exists()


@pytest.mark.asyncio
async def test_concurrent_edits_of_one_file_both_land(project, unity_root: Path):
    write_file(unity_root, ENEMY, ENEMY_TEXT)
    tool = make_tool("update_script_diff", project)
    spec = ToolSpec(name="update_script_diff")

    first, second = await asyncio.gather(
        tool.run(spec, {"path": ENEMY, "patches": [{"searchPattern": '"tick"', "newContent": '        Debug.Log("one");'}]}),
        tool.run(spec, {"path": ENEMY, "patches": [{"searchPattern": '"tock"', "newContent": '        Debug.Log("two");'}]}),
    )

    assert not first.is_error and not second.is_error
    text = read_file(unity_root, ENEMY)
    assert '"one"' in text and '"two"' in text


@pytest.mark.asyncio
async def test_workspace_settings_flow_into_tools(unity_root: Path):
    settings = Settings(workspace=WorkspaceSettings(allowed_roots=["ProjectSettings"]))
    project = Project(base_path=unity_root, settings=settings)
    write_file(unity_root, ENEMY, ENEMY_TEXT)
    tool = make_tool("update_script_diff", project)
    resp = await tool.run(
        ToolSpec(name="update_script_diff"),
        {"path": ENEMY, "patches": [{"startLine": 1, "newContent": "x"}]},
    )
    assert resp.is_error
    assert "ProjectSettings" in resp.text


@pytest.mark.asyncio
async def test_openapi_specs_describe_arguments(project):
    expected = {
        "update_script_diff": {"path", "patches"},
        "apply_diff": {"path", "diff"},
        "create_diff": set(),
        "validate_diff": {"path", "diff"},
        "apply_patch": {"patch"},
    }
    for name, required in expected.items():
        tool = make_tool(name, project)
        spec = await tool.openapi_spec(ToolSpec(name=name))
        assert spec["name"] == name
        assert spec["parameters"]["type"] == "object"
        assert set(spec["parameters"].get("required", [])) == required
