import io
import tarfile
from pathlib import Path

from pki_errors import IOFailure
from pki_utils import write_bytes_atomic


def pack_directory(source_dir: Path, entry_name: str) -> bytes:
    """Return a gzipped tar holding ``source_dir`` as the single top-level ``entry_name``."""
    buffer = io.BytesIO()
    try:
        with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
            archive.add(str(source_dir), arcname=entry_name, recursive=False)
            for path in sorted(source_dir.iterdir()):
                archive.add(str(path), arcname=f"{entry_name}/{path.name}")
    except (OSError, tarfile.TarError) as exc:
        raise IOFailure(f"Failed to package {source_dir}: {exc}") from exc
    return buffer.getvalue()


def write_bundle(source_dir: Path, entry_name: str, target: Path) -> Path:
    write_bytes_atomic(target, pack_directory(source_dir, entry_name))
    return target
