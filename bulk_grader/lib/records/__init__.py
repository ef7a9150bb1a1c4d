RECORD_SCHEMA_VERSION = "records:v1"

from bulk_grader.lib.records.codecs import (  # noqa: E402
    encode_export_json,
    encode_export_rows,
    export_columns,
    from_document,
    to_document,
)

__all__ = [
    "RECORD_SCHEMA_VERSION",
    "encode_export_json",
    "encode_export_rows",
    "export_columns",
    "from_document",
    "to_document",
]
