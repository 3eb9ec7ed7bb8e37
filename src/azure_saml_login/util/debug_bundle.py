from __future__ import annotations

import time
import zipfile
from pathlib import Path
from typing import Optional


def create_debug_bundle(
    *,
    capture_dir: str,
    log_file: str = "",
    out_dir: str = "data",
    profile: str = "",
) -> Path:
    """
    Zip the captured IdP pages + log file into one shareable archive.

    Only server responses are captured (never our POST bodies), so the bundle holds no password.
    It can still hold session tokens from the pages; share it with care.
    """
    out_root = Path(out_dir)
    out_root.mkdir(parents=True, exist_ok=True)

    stamp = time.strftime("%Y%m%d_%H%M%S")
    prof = (profile or "").strip().lower()
    prof_part = f"_{prof}" if prof else ""
    out_path = out_root / f"debug_bundle{prof_part}_{stamp}.zip"

    captures = Path(capture_dir)
    log: Optional[Path] = Path(log_file) if log_file else None

    def _add_file(z: zipfile.ZipFile, file_path: Path, arcname: str) -> None:
        try:
            if file_path.exists() and file_path.is_file():
                z.write(file_path, arcname=arcname)
        except OSError:
            # best-effort; don't fail bundling because a file disappeared
            return

    with zipfile.ZipFile(out_path, "w", compression=zipfile.ZIP_DEFLATED) as z:
        if log is not None:
            _add_file(z, log, arcname=log.name)

        if captures.exists() and captures.is_dir():
            for p in sorted(captures.rglob("*")):
                if not p.is_file() or p.resolve() == out_path.resolve():
                    continue
                if p.suffix == ".zip":
                    continue
                rel = p.relative_to(captures)
                _add_file(z, p, arcname=str(Path("pages") / rel))

    return out_path
