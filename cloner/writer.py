"""
Output writing: directory tree, zip archive and JSON run summary
"""
import json
import logging
import zipfile
from pathlib import Path
from typing import List, Optional

from cloner.models import CloneResult

logger = logging.getLogger(__name__)


class ResultWriter:
    """Materializes a CloneResult on disk"""

    def __init__(self, output_dir: str):
        self.output_dir = Path(output_dir)

    def target_for(self, relative_path: str) -> Optional[Path]:
        """Real destination of `relative_path`, or None if it leaves the output dir"""
        root = self.output_dir.resolve()
        target = (root / relative_path).resolve()
        if target == root or not target.is_relative_to(root):
            return None
        return target

    def write_directory(self, result: CloneResult) -> int:
        """Write every file beneath the output directory; returns the count written"""
        logger.info(f"[+] Writing {result.total_files} files to {self.output_dir}")
        self.output_dir.mkdir(parents=True, exist_ok=True)

        written = 0
        for relative_path, content in sorted(result.files.items()):
            target = self.target_for(relative_path)
            if target is None:
                logger.warning(f"[!] Refusing to write outside {self.output_dir}: {relative_path}")
                result.add_error("refused to write outside the output directory", file=relative_path)
                continue
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content, encoding='utf-8', errors='replace')
                written += 1
            except OSError as e:
                logger.error(f"Failed to write {target}: {e}")
                result.add_error(f"write failed: {e}", file=relative_path)

        logger.info(f"[+] Wrote {written} files to {self.output_dir}")
        return written

    def write_zip(self, result: CloneResult, zip_path: str) -> int:
        """Write every file into a zip archive; returns the entry count"""
        path = Path(zip_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with zipfile.ZipFile(path, 'w', compression=zipfile.ZIP_DEFLATED) as archive:
            for relative_path, content in sorted(result.files.items()):
                archive.writestr(relative_path, content.encode('utf-8', errors='replace'))

        logger.info(f"[+] Wrote {result.total_files} files to {path}")
        return result.total_files

    def write_summary(self, result: CloneResult, summary_path: str):
        """JSON report of the run"""
        path = Path(summary_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(result.summary(), f, indent=2)
        logger.info(f"[+] Wrote summary to {path}")

    def dry_run(self, result: CloneResult) -> List[str]:
        """Paths that would be written, logged instead of written"""
        paths = [str(self.output_dir / relative_path) for relative_path in sorted(result.files)]
        for path in paths:
            logger.info(f"Would write: {path}")
        logger.info(f"[+] Dry run: {len(paths)} files would be written to {self.output_dir}")
        return paths
