import base64
import re

_EMPHASIS = re.compile(r"[*_#]")
_WHITESPACE = re.compile(r"\s+")

DATA_URL_PREFIX = "data:"


def strip_markdown(text: str) -> str:
    """Drop the emphasis characters that TTS would read aloud or the PDF would print."""
    return _EMPHASIS.sub("", text)


def export_filename(title: str) -> str:
    return f"{_WHITESPACE.sub('_', title.strip()) or 'Untitled'}_Chronicle.pdf"


def to_data_url(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def from_data_url(url: str) -> bytes:
    if not url.startswith(DATA_URL_PREFIX):
        raise ValueError("not a data URL")
    header, sep, payload = url.partition(",")
    if not sep or not header.endswith(";base64"):
        raise ValueError("only base64 data URLs are supported")
    return base64.b64decode(payload, validate=True)
