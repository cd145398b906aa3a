from __future__ import annotations

from pathlib import Path

# .../src/pilgrim_booking/config/paths.py -> the checkout root is 3 parents up
PROJECT_ROOT = Path(__file__).resolve().parents[3]


def env_file_path() -> Path:
    return PROJECT_ROOT / ".env"


def runtime_dir() -> Path:
    """Local, git-ignored area for files the engine writes itself (drafts, uploads)."""
    return PROJECT_ROOT / "var"


def default_draft_dir() -> Path:
    return runtime_dir() / "drafts"


def default_upload_dir() -> Path:
    return runtime_dir() / "uploads"
