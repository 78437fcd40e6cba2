import os
import subprocess
import tempfile
from pathlib import Path

from werkzeug.utils import secure_filename

from pki_errors import IOFailure, ValidationFailure


def run_openssl_capture(args: list[str]) -> str:
    result = subprocess.run(
        ["openssl", *args], check=True, capture_output=True, text=True
    )
    return result.stdout


def write_text_atomic(path: Path, text: str, mode: int = 0o644) -> None:
    """Write ``text`` to a temporary sibling of ``path`` and move it into place."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
                os.chmod(tmp_path, mode)
            os.replace(tmp_path, path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise IOFailure(f"Failed to write {path}: {exc}") from exc


def write_bytes_atomic(path: Path, data: bytes) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_path, path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise IOFailure(f"Failed to write {path}: {exc}") from exc


def read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise IOFailure(f"Failed to read {path}: {exc}") from exc


def safe_name(name: str) -> str:
    """Map a common name onto the file stem used for its cert/key pair."""
    cleaned = secure_filename(name.strip())
    if not cleaned:
        raise ValidationFailure(f"'{name}' cannot be used as a certificate name")
    return cleaned
