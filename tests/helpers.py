from pathlib import Path


def write_file(root: Path, rel: str, text: str) -> Path:
    """Write `text` under `root` byte for byte (no newline translation)."""
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(text.encode("utf-8"))
    return path


def read_file(root: Path, rel: str) -> str:
    return (root / rel).read_bytes().decode("utf-8")
