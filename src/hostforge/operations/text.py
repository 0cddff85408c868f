"""
Text file reading and writing.

Encodings are given explicitly or sniffed from a byte-order mark; files
without a mark are read as UTF-8. Reads are bounded by a size ceiling and,
unless disabled, reject content that looks binary.
"""

from __future__ import annotations

import codecs
from pathlib import Path

import humanize

from hostforge.core.config import HostForgeConfig
from hostforge.core.models import EncodingInfo, TextContent, TextWriteResult
from hostforge.core.result import (
    OperationResult,
    PreconditionError,
    ValidationError,
    VerificationError,
    operation,
    require,
)
from hostforge.core.safety import check_path_length, check_reserved_name
from hostforge.operations.base import OperationGroup
from hostforge.platform.paths import normalize_path

# UTF-32 LE must be tested before UTF-16 LE; its mark starts with FF FE.
BYTE_ORDER_MARKS: list[tuple[bytes, str]] = [
    (codecs.BOM_UTF32_LE, "utf-32-le"),
    (codecs.BOM_UTF32_BE, "utf-32-be"),
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
]

BOM_FOR_CODEC = {codec: bom for bom, codec in BYTE_ORDER_MARKS}

# name -> (codec, whether the name implies a byte-order mark)
ENCODING_ALIASES: dict[str, tuple[str, bool]] = {
    "default": ("utf-8", False),
    "utf8": ("utf-8", False),
    "utf-8": ("utf-8", False),
    "utf8bom": ("utf-8", True),
    "utf8-bom": ("utf-8", True),
    "utf-8-bom": ("utf-8", True),
    "utf-8-sig": ("utf-8", True),
    "unicode": ("utf-16-le", True),
    "utf-16": ("utf-16-le", True),
    "utf16": ("utf-16-le", True),
    "bigendianunicode": ("utf-16-be", True),
    "utf32": ("utf-32-le", True),
    "utf-32": ("utf-32-le", True),
    "ascii": ("ascii", False),
}

# Names that fix the width but leave the byte order to the mark when reading.
ENDIAN_NEUTRAL = {"utf-16": "utf-16", "utf16": "utf-16", "utf-32": "utf-32", "utf32": "utf-32"}


def _alias_key(name: str) -> str:
    return name.strip().lower().replace("_", "-")


def resolve_encoding(name: str) -> tuple[str, bool]:
    """Map an encoding name to ``(codec, implies_bom)``."""
    if not name or not name.strip():
        raise ValidationError("Parameter 'encoding' must not be empty")
    key = _alias_key(name)
    if key in ENCODING_ALIASES:
        return ENCODING_ALIASES[key]
    try:
        codec = codecs.lookup(key).name
    except LookupError:
        raise ValidationError(f"Unknown encoding '{name}'") from None
    return ENCODING_ALIASES.get(codec, (codec, False))


def endian_neutral_family(name: str) -> str | None:
    """``utf-16`` or ``utf-32`` when ``name`` leaves the byte order open."""
    key = _alias_key(name)
    if key not in ENCODING_ALIASES:
        try:
            key = codecs.lookup(key).name
        except LookupError:
            return None
    return ENDIAN_NEUTRAL.get(key)


def sniff_encoding(data: bytes) -> tuple[str, bytes]:
    """Return the codec and the mark found at the start of ``data``."""
    for bom, codec in BYTE_ORDER_MARKS:
        if data.startswith(bom):
            return codec, bom
    return "utf-8", b""


def _is_wide(codec: str) -> bool:
    return codec.startswith(("utf-16", "utf-32"))


def encode_text(content: str, codec: str) -> bytes:
    try:
        return content.encode(codec)
    except UnicodeEncodeError as e:
        raise ValidationError(
            f"Content cannot be encoded as {codec}: character {e.object[e.start]!r} at position {e.start}"
        ) from None


class TextOperations(OperationGroup):
    """Encoding-aware text file access."""

    logger_name = "hostforge.operations.text"

    def __init__(self, config: HostForgeConfig | None = None) -> None:
        super().__init__(config)

    def _existing_file(self, path: str) -> Path:
        target = normalize_path(path).path
        if not target.exists():
            raise PreconditionError(f"File '{target}' does not exist")
        if target.is_dir():
            raise PreconditionError(f"'{target}' is a directory, not a file")
        return target

    @operation("detect_encoding")
    def detect_encoding(self, path: str) -> OperationResult[EncodingInfo]:
        require(path=path)
        target = self._existing_file(path)
        with open(target, "rb") as f:
            head = f.read(4)
        codec, bom = sniff_encoding(head)
        return OperationResult.ok(EncodingInfo(str(target), codec, bool(bom)))

    @operation("read_text")
    def read_text(
        self,
        path: str,
        *,
        encoding: str | None = None,
        max_bytes: int | None = None,
        validate: bool = True,
    ) -> OperationResult[TextContent]:
        """Read a whole text file.

        A file larger than the ceiling is rejected rather than truncated.
        The binary check looks for NUL bytes in a sampled prefix and is
        skipped for UTF-16 and UTF-32, where NUL bytes are normal.
        """
        require(path=path)
        if max_bytes is not None and max_bytes <= 0:
            raise ValidationError("Parameter 'max_bytes' must be positive")
        explicit = resolve_encoding(encoding)[0] if encoding is not None else None
        family = endian_neutral_family(encoding) if encoding is not None else None

        target = self._existing_file(path)
        limit = max_bytes or self.config.files.max_read_bytes
        size = target.stat().st_size
        if size > limit:
            raise PreconditionError(
                f"'{target}' is {humanize.naturalsize(size, binary=True)}, "
                f"over the {humanize.naturalsize(limit, binary=True)} read limit"
            )

        data = target.read_bytes()
        detected, bom = sniff_encoding(data)
        if explicit is None or (family and bom and detected.startswith(family)):
            codec = detected
        else:
            codec = explicit
            bom = BOM_FOR_CODEC.get(codec, b"")
            if not data.startswith(bom):
                bom = b""
        body = data[len(bom):]

        if validate and not _is_wide(codec):
            sample = body[: self.config.files.binary_sample_bytes]
            offset = sample.find(b"\x00")
            if offset >= 0:
                raise PreconditionError(
                    f"'{target}' looks like binary content (NUL byte at offset {offset + len(bom)}); "
                    "pass validate=False to read it anyway"
                )

        try:
            content = body.decode(codec)
        except UnicodeDecodeError as e:
            raise PreconditionError(
                f"Cannot decode '{target}' as {codec}: {e.reason} at byte {e.start + len(bom)}"
            ) from None

        self.logger.debug("Read text file", path=str(target), encoding=codec, size=size)
        return OperationResult.ok(
            TextContent(
                path=str(target),
                content=content,
                encoding=codec,
                has_bom=bool(bom),
                size_bytes=size,
            )
        )

    @operation("write_text")
    def write_text(
        self,
        path: str,
        content: str,
        *,
        encoding: str = "utf-8",
        append: bool = False,
        overwrite: bool = False,
        bom: bool = False,
        create_parents: bool = True,
    ) -> OperationResult[TextWriteResult]:
        """Write or append text.

        Appending never writes a byte-order mark into the middle of a file.
        """
        require(path=path)
        if content is None:
            raise ValidationError("Parameter 'content' is required")
        if append and overwrite:
            raise ValidationError("'append' and 'overwrite' cannot be combined")
        codec, implied_bom = resolve_encoding(encoding)
        want_bom = bom or implied_bom
        if want_bom and codec not in BOM_FOR_CODEC:
            raise ValidationError(f"Encoding '{encoding}' has no byte-order mark")
        payload = encode_text(content, codec)

        target = normalize_path(path).path
        check_reserved_name(target)
        check_path_length(target, self.config.files.max_path_length)
        if target.is_dir():
            raise PreconditionError(f"'{target}' is a directory, not a file")

        exists = target.exists()
        if exists and not (append or overwrite):
            raise PreconditionError(
                f"File '{target}' already exists; pass overwrite=True or append=True"
            )
        if not target.parent.exists():
            if not create_parents:
                raise PreconditionError(f"Parent directory '{target.parent}' does not exist")
            target.parent.mkdir(parents=True)

        appending = append and exists and target.stat().st_size > 0
        if appending:
            before = target.stat().st_size
            data = payload
            mode = "ab"
        else:
            before = 0
            data = (BOM_FOR_CODEC[codec] if want_bom else b"") + payload
            mode = "wb"

        with open(target, mode) as f:
            f.write(data)

        size = target.stat().st_size
        if size != before + len(data):
            raise VerificationError(
                f"'{target}' is {size} bytes after writing; expected {before + len(data)}"
            )

        self.logger.debug("Wrote text file", path=str(target), encoding=codec, bytes=len(data))
        return OperationResult.ok(
            TextWriteResult(
                path=str(target),
                encoding=codec,
                bytes_written=len(data),
                size_bytes=size,
                appended=appending,
            )
        )
