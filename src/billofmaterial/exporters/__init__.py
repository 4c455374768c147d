"""Document emitters for a finished aggregate."""

from billofmaterial.exporters.cyclonedx import generate_cyclonedx
from billofmaterial.exporters.integrity import compute_integrity_hash, verify_integrity
from billofmaterial.exporters.markdown import generate_markdown
from billofmaterial.exporters.serialization import dumps, to_jsonable
from billofmaterial.exporters.spdx import generate_spdx
from billofmaterial.exporters.tabular import to_csv, to_json

__all__ = [
    "compute_integrity_hash",
    "dumps",
    "generate_cyclonedx",
    "generate_markdown",
    "generate_spdx",
    "to_csv",
    "to_json",
    "to_jsonable",
    "verify_integrity",
]
