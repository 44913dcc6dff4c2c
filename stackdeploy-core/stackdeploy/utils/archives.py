import io
import zipfile

from .strings import to_bytes


def zip_string(file_name: str, content: str) -> bytes:
    """Creates an in-memory zip archive containing a single file with the given content."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zip_file:
        info = zipfile.ZipInfo(file_name, date_time=(1980, 1, 1, 0, 0, 0))
        info.external_attr = 0o755 << 16
        zip_file.writestr(info, to_bytes(content))
    return buffer.getvalue()
