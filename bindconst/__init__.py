# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause
"""
Extract typed constants and structure layouts from C headers.
"""
from bindconst.errors import (
    CircularReferenceError,
    DeadlineExceeded,
    Diagnostic,
    EvalError,
    ExtractionError,
    LexError,
    PasteError,
    StructureError,
    UnknownMacroError,
)
from bindconst.extractor import (
    ExtractionResult,
    extract,
    extract_file,
    extract_files,
)
from bindconst.platform import Platform

__version__ = "1.0.0"

__all__ = [
    "CircularReferenceError",
    "DeadlineExceeded",
    "Diagnostic",
    "EvalError",
    "ExtractionError",
    "ExtractionResult",
    "LexError",
    "PasteError",
    "Platform",
    "StructureError",
    "UnknownMacroError",
    "extract",
    "extract_file",
    "extract_files",
]
