"""WadeScript: a statically typed, Python-flavored language compiled to native code via LLVM."""

__version__ = "0.1.0"
