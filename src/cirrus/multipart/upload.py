"""Sequential multipart upload driver.

Slices the payload, binds Content-Range and hash headers to each part
request, executes the parts one after another and rebuilds the archive tree
hash from the part hashes. Parallel scheduling is left to callers, who can
issue one executor command per slice themselves.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import httpx

from ..command.executor import CommandExecutor
from ..hashing.treehash import bind_hashes, tree_hash, tree_hash_from_parts
from ..http.models import Request
from ..http.payload import Payload
from ..retry.classifiers import IntegrityCheck
from ..utils.logging import get_logger
from .ranges import bind_content_range
from .slicer import PayloadSlice, SlicingStrategy

log = get_logger("multipart")

PartRequestBuilder = Callable[[PayloadSlice], Request]


@dataclass
class UploadSummary:
    part_size: int
    parts: Dict[int, bytes] = field(default_factory=dict)
    tree_hash: bytes = b""
    responses: List[httpx.Response] = field(default_factory=list)

    @property
    def tree_hex(self) -> str:
        return self.tree_hash.hex()


def upload_parts(
    executor: CommandExecutor,
    payload: Payload,
    build_part_request: PartRequestBuilder,
    slicer: Optional[SlicingStrategy] = None,
    on_failure: Optional[Callable[[BaseException], None]] = None,
    **execute_kw,
) -> UploadSummary:
    """Upload every slice of ``payload``; raises the part's CommandError on failure.

    ``on_failure`` runs before the error propagates (e.g. to abort the upload id).
    """
    slicer = slicer or SlicingStrategy()
    slicer.start_slicing(payload)
    summary = UploadSummary(part_size=slicer.part_size)
    try:
        while slicer.has_next():
            piece = slicer.next_slice()
            hashes = tree_hash(piece.payload)
            request = build_part_request(piece).with_payload(piece.payload)
            request = bind_hashes(bind_content_range(request, piece.range), hashes=hashes)
            result = executor.execute(request, classifiers=[IntegrityCheck(hashes.tree_hex)], **execute_kw)
            response = result.raise_for_error()
            summary.parts[piece.part_number] = hashes.tree_hash
            summary.responses.append(response)
            log.info("part %d uploaded range=%s attempts=%d", piece.part_number, piece.range, result.attempts)
    except Exception as e:
        if on_failure is not None:
            on_failure(e)
        raise
    if summary.parts:
        summary.tree_hash = tree_hash_from_parts(summary.parts)
    else:
        summary.tree_hash = tree_hash(payload).tree_hash
    return summary
