from pathlib import Path
from typing import List


def sample_dir(root: Path, problem: str, split: str) -> Path:
    """.../<problem>/samples/<split>, created if missing."""
    path = root / problem / "samples" / split
    path.mkdir(parents=True, exist_ok=True)
    return path


def sample_files(directory: Path) -> List[Path]:
    """Sample files of a directory, in a stable order."""
    return sorted(Path(directory).glob("sample_*.pkl"))


def sample_path(directory: Path, instance: str, index: int) -> Path:
    """Map an instance file name and a decision point index to .../sample_<name>_<index>.pkl"""
    stem = Path(instance).name.split(".")[0]
    return Path(directory) / f"sample_{stem}_{index}.pkl"
