import io
import json
import tarfile
import time

from vexhub.services.snapshot import Snapshot
from vexhub.vex.openvex import serialize_document

INDEX_FILE = "index.json"


def index_json(snapshot: Snapshot) -> bytes:
    return json.dumps(snapshot.index.model_dump(mode="json"), indent=2).encode("utf-8")


def _add_file(tar: tarfile.TarFile, name: str, data: bytes):
    info = tarfile.TarInfo(name=name)
    info.size = len(data)
    info.mode = 0o644
    info.mtime = int(time.time())
    tar.addfile(info, io.BytesIO(data))


def build_archive(snapshot: Snapshot, document_name: str) -> bytes:
    """Build vex-data.tar.gz in memory.

    vex-data.tar.gz
    ├── index.json
    └── <document_name>
    """
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        _add_file(tar, INDEX_FILE, index_json(snapshot))
        _add_file(tar, document_name, serialize_document(snapshot.document))
    return buffer.getvalue()
