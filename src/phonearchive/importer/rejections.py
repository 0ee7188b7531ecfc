"""Write rejected records next to the reasons they were rejected."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import yaml
from lxml import etree

from phonearchive.core.errors import atomic_write
from phonearchive.records.base import write_document
from phonearchive.repository import layout
from phonearchive.repository.manifest import calculate_file_checksum

logger = logging.getLogger(__name__)

_ROOT_TAGS = {"calls": "calls", "sms": "smses"}


@dataclass
class RejectedRecord:
    record: object
    reasons: list[str]
    position: int  # 1-based index of the record within its source file


class RejectionWriter:
    """Writes ``rejected/<kind>/<name>-<hash8>-<timestamp>-rejects.xml``.

    A matching ``-violations.yaml`` lists the reasons per record. Nothing is
    created when there is nothing to reject.
    """

    def __init__(self, repo_root: Path):
        self.repo_root = Path(repo_root)

    def write(self, kind: str, source: Path, rejected: list[RejectedRecord]) -> str | None:
        if not rejected:
            return None
        directory = self.repo_root / layout.REJECTED_DIR / kind
        directory.mkdir(parents=True, exist_ok=True)

        digest = calculate_file_checksum(Path(source))[:8]
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        base = f"{Path(source).stem}-{digest}-{stamp}"

        root = etree.Element(_ROOT_TAGS[kind], count=str(len(rejected)))
        for item in rejected:
            root.append(item.record.to_element())
        xml_path = directory / f"{base}-rejects.xml"
        write_document(xml_path, root)

        violations = [
            {"position": item.position, "violations": list(item.reasons)}
            for item in rejected
        ]
        atomic_write(
            directory / f"{base}-violations.yaml",
            yaml.safe_dump({"source": Path(source).name, "rejections": violations},
                           default_flow_style=False, sort_keys=False),
        )
        rel = xml_path.relative_to(self.repo_root).as_posix()
        logger.info("wrote %d rejected %s record(s) to %s", len(rejected), kind, rel)
        return rel

