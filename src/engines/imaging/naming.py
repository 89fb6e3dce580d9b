import re
from typing import Optional, Union

from src.engines.imaging.schemas import OutputFormat

DEFAULT_EXTENSION = "jpg"

_WHITESPACE = re.compile(r"\s+")


def split_extension(filename: str):
    """Split on the last dot, ignoring a dot in first position (".env" has no extension)."""
    last_dot = filename.rfind(".")
    if last_dot > 0:
        return filename[:last_dot], filename[last_dot + 1:]
    return filename, None


def build_output_filename(
    original_name: str,
    suffix: Optional[str],
    output_format: Union[OutputFormat, str],
    to_lowercase: bool,
    replace_spaces: bool
) -> str:
    """
    Derive the output filename for one processed image.

    >>> build_output_filename("Product Photo.JPG", "_web", "webp", True, True)
    'product-photo_web.webp'
    >>> build_output_filename("file", "", "original", False, False)
    'file.jpg'
    """
    stem, original_ext = split_extension(original_name)

    if to_lowercase:
        stem = stem.lower()
    if replace_spaces:
        stem = _WHITESPACE.sub("-", stem)

    fmt = output_format.value if isinstance(output_format, OutputFormat) else str(output_format)
    if fmt == OutputFormat.ORIGINAL.value:
        ext = original_ext or DEFAULT_EXTENSION
    else:
        ext = fmt

    if ext.startswith("."):
        ext = ext[1:]
    return f"{stem}{suffix or ''}.{ext}"
